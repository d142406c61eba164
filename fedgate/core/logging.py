"""Protocol logging for the federation hops.

Records the outbound HTTP exchanges a Client makes on behalf of a login
(code redemption, resource calls) with configurable verbosity, and keeps
codes, tokens, SAML payloads and assertion fingerprints out of the logs
unless TRACE is explicitly enabled.

Log levels:
- ERROR: Only log errors
- INFO: Log flow milestones (hop started, status received)
- DEBUG: Log HTTP details (headers, status codes, timing)
- TRACE: Log full request/response bodies including sensitive data (requires explicit enable)
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

import httpx

# Custom log level for TRACE (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Module logger
logger = logging.getLogger("fedgate.protocol")

BODY_PREVIEW_CHARS = 2000


class LogLevel(IntEnum):
    """Protocol logging levels."""

    ERROR = logging.ERROR  # 40
    INFO = logging.INFO  # 20
    DEBUG = logging.DEBUG  # 10
    TRACE = TRACE  # 5


# Query/form parameters whose values never reach the log
_SENSITIVE_PARAMS = (
    "code",
    "access_token",
    "refresh_token",
    "client_secret",
    "password",
    "samlToken",
    "samlResponse",
    "SAMLResponse",
    "samlRequest",
)

SENSITIVE_PATTERNS = [
    *(
        (re.compile(rf"(\b{name}=)[^&\s]+", re.IGNORECASE), r"\1[REDACTED]")
        for name in _SENSITIVE_PARAMS
    ),
    # HTTP headers (with or without "Authorization:" prefix for header dict values)
    (re.compile(r"(Authorization:\s*Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Authorization:\s*Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Bearer\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"^(Basic\s+)[^\s]+", re.IGNORECASE), r"\1[REDACTED]"),
    # Cookies (the Client keeps its access token in one)
    (re.compile(r"(Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(Set-Cookie:\s*)[^\r\n]+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(OAuthToken=)[^;\s]+"), r"\1[REDACTED]"),
    # JSON fields
    (
        re.compile(r'"(access_token|refresh_token|client_secret|password|fingerprint)"\s*:\s*"[^"]+"'),
        r'"\1": "[REDACTED]"',
    ),
]


def redact_sensitive(text: str) -> str:
    """Redact sensitive information from text.

    Args:
        text: Text that may contain sensitive data.

    Returns:
        Text with sensitive data redacted.
    """
    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _preview(body: str) -> str:
    suffix = "..." if len(body) > BODY_PREVIEW_CHARS else ""
    return f"{body[:BODY_PREVIEW_CHARS]}{suffix}"


@dataclass
class HTTPExchange:
    """A single outbound request/response between two services."""

    id: str
    timestamp: datetime
    method: str
    url: str
    request_headers: dict[str, str]
    request_body: str | None = None
    response_status: int | None = None
    response_headers: dict[str, str] = field(default_factory=dict)
    response_body: str | None = None
    duration_ms: float | None = None
    error: str | None = None

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization.

        Args:
            include_sensitive: If True, include raw sensitive data.
                               If False, redact sensitive information.
        """
        def process(value: str | None) -> str | None:
            if value is None or include_sensitive:
                return value
            return redact_sensitive(value)

        def process_headers(headers: dict[str, str]) -> dict[str, str]:
            if include_sensitive:
                return dict(headers)
            return {k: redact_sensitive(v) for k, v in headers.items()}

        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "method": self.method,
            "url": process(self.url),
            "request_headers": process_headers(self.request_headers),
            "request_body": process(self.request_body),
            "response_status": self.response_status,
            "response_headers": process_headers(self.response_headers),
            "response_body": process(self.response_body),
            "duration_ms": self.duration_ms,
            "error": self.error,
        }

    def format_log(self, level: LogLevel, include_sensitive: bool = False) -> str:
        """Format the exchange for logging.

        Args:
            level: Log level determines how much detail to include.
            include_sensitive: If True, include raw sensitive data.
        """
        data = self.to_dict(include_sensitive)
        status = self.response_status or "ERROR"
        lines = [f"HTTP {self.method} {data['url']} -> {status}"]

        if self.duration_ms is not None:
            lines.append(f"  Duration: {self.duration_ms:.1f}ms")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if level <= LogLevel.DEBUG:
            lines.append("  Request Headers:")
            for name, value in data["request_headers"].items():
                lines.append(f"    {name}: {value}")
            if data["response_headers"]:
                lines.append("  Response Headers:")
                for name, value in data["response_headers"].items():
                    lines.append(f"    {name}: {value}")

        if level <= LogLevel.TRACE:
            if data["request_body"]:
                lines.append("  Request Body:")
                lines.append(f"    {_preview(data['request_body'])}")
            if data["response_body"]:
                lines.append("  Response Body:")
                lines.append(f"    {_preview(data['response_body'])}")

        return "\n".join(lines)


@dataclass
class ProtocolLog:
    """Collects the exchanges made for one login attempt."""

    flow_id: str
    exchanges: list[HTTPExchange] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    def add_exchange(self, exchange: HTTPExchange) -> None:
        """Add an HTTP exchange to the log."""
        self.exchanges.append(exchange)

    def complete(self) -> None:
        """Mark the log as complete."""
        self.completed_at = datetime.now(UTC)

    def to_dict(self, include_sensitive: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "flow_id": self.flow_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "exchanges": [e.to_dict(include_sensitive) for e in self.exchanges],
            "exchange_count": len(self.exchanges),
        }


class ProtocolLogger:
    """Configurable protocol logger for the federation hops.

    Keeps one ``ProtocolLog`` per flow id, so concurrent logins from
    different request handlers do not interleave their records.
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        trace_enabled: bool = False,
        max_flows: int = 256,
    ) -> None:
        """Initialize the protocol logger.

        Args:
            level: Minimum log level.
            trace_enabled: Whether TRACE level is enabled (for sensitive data).
            max_flows: How many flow logs to keep in memory.
        """
        self._level = level
        self._trace_enabled = trace_enabled
        self._max_flows = max_flows
        self._flows: dict[str, ProtocolLog] = {}
        self._exchange_counter = 0

    @property
    def level(self) -> LogLevel:
        """Get current log level."""
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def trace_enabled(self) -> bool:
        """Whether TRACE level is enabled."""
        return self._trace_enabled

    @trace_enabled.setter
    def trace_enabled(self, value: bool) -> None:
        self._trace_enabled = value

    @property
    def effective_level(self) -> LogLevel:
        """Get effective log level (TRACE only if explicitly enabled)."""
        if self._level == LogLevel.TRACE and not self._trace_enabled:
            return LogLevel.DEBUG
        return self._level

    def next_exchange_id(self) -> str:
        self._exchange_counter += 1
        return f"http_{self._exchange_counter:04d}"

    def flow(self, flow_id: str) -> ProtocolLog:
        """Get or start the log for a flow."""
        log = self._flows.get(flow_id)
        if log is None:
            if len(self._flows) >= self._max_flows:
                oldest = next(iter(self._flows))
                self._flows.pop(oldest, None)
            log = self._flows[flow_id] = ProtocolLog(flow_id=flow_id)
            logger.info("Started protocol log for flow %s", flow_id)
        return log

    def end_flow(self, flow_id: str) -> ProtocolLog | None:
        """End a flow and return its log, or None if it was never started."""
        log = self._flows.pop(flow_id, None)
        if log is not None:
            log.complete()
            logger.info(
                "Completed protocol log for flow %s (%d exchanges)",
                flow_id,
                len(log.exchanges),
            )
        return log

    def log_exchange(self, exchange: HTTPExchange, flow_id: str | None = None) -> None:
        """Log an HTTP exchange, attaching it to a flow when one is given."""
        if flow_id is not None:
            self.flow(flow_id).add_exchange(exchange)

        effective = self.effective_level
        include_sensitive = self._trace_enabled and self._level <= LogLevel.TRACE

        if effective <= LogLevel.DEBUG:
            logger.debug(exchange.format_log(effective, include_sensitive))
        elif effective <= LogLevel.INFO:
            logger.info(exchange.format_log(effective, include_sensitive))

        if exchange.error:
            logger.error(
                "HTTP error: %s %s: %s",
                exchange.method,
                redact_sensitive(exchange.url),
                exchange.error,
            )


def _decode_body(content: bytes) -> str | None:
    if not content:
        return None
    try:
        return content.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary content>"


class LoggingClient(httpx.Client):
    """HTTPX client that records every exchange with a ProtocolLogger.

    Redirects are never followed: each hop of the federation protocol is
    an explicit step.
    """

    def __init__(
        self,
        protocol_logger: ProtocolLogger | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize the logging client.

        Args:
            protocol_logger: ProtocolLogger to use. Uses the global one if not provided.
            **kwargs: Additional arguments passed to httpx.Client.
        """
        self._protocol_logger = protocol_logger or get_protocol_logger()
        kwargs["follow_redirects"] = False
        super().__init__(**kwargs)

    @property
    def protocol_logger(self) -> ProtocolLogger:
        """Get the protocol logger."""
        return self._protocol_logger

    def send_logged(self, request: httpx.Request, flow_id: str | None = None) -> httpx.Response:
        """Send a request and log the exchange.

        Args:
            request: Request built with ``build_request``.
            flow_id: Login attempt the exchange belongs to.

        Raises:
            httpx.HTTPError: On transport failures (after logging them).
        """
        exchange = HTTPExchange(
            id=self._protocol_logger.next_exchange_id(),
            timestamp=datetime.now(UTC),
            method=request.method,
            url=str(request.url),
            request_headers=dict(request.headers),
            request_body=_decode_body(request.content),
        )
        start_time = time.perf_counter()

        try:
            response = self.send(request)
            response.read()
        except httpx.HTTPError as e:
            exchange.duration_ms = (time.perf_counter() - start_time) * 1000
            exchange.error = str(e) or type(e).__name__
            self._protocol_logger.log_exchange(exchange, flow_id)
            raise

        exchange.duration_ms = (time.perf_counter() - start_time) * 1000
        exchange.response_status = response.status_code
        exchange.response_headers = dict(response.headers)
        exchange.response_body = response.text
        self._protocol_logger.log_exchange(exchange, flow_id)
        return response


# Global protocol logger instance
_global_logger: ProtocolLogger | None = None


def get_protocol_logger() -> ProtocolLogger:
    """Get the global protocol logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = ProtocolLogger()
    return _global_logger


def set_protocol_logger(logger_instance: ProtocolLogger) -> None:
    """Set the global protocol logger instance."""
    global _global_logger
    _global_logger = logger_instance


def parse_log_level(level: LogLevel | str) -> LogLevel:
    """Parse a level name (ERROR, INFO, DEBUG, TRACE), defaulting to INFO."""
    if isinstance(level, LogLevel):
        return level
    return LogLevel.__members__.get(level.upper(), LogLevel.INFO)


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    trace_enabled: bool = False,
    log_file: str | None = None,
) -> ProtocolLogger:
    """Configure the ``fedgate`` loggers and the global protocol logger.

    Args:
        level: Log level (ERROR, INFO, DEBUG, TRACE) or string name.
        trace_enabled: Whether to enable TRACE level (includes sensitive data).
        log_file: Optional file path to write logs to.

    Returns:
        Configured ProtocolLogger.
    """
    level = parse_log_level(level)

    root = logging.getLogger("fedgate")
    root.setLevel(level)
    root.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    protocol_logger = ProtocolLogger(level=level, trace_enabled=trace_enabled)
    set_protocol_logger(protocol_logger)

    if trace_enabled:
        root.warning("TRACE logging enabled - tokens and SAML payloads will be logged!")

    return protocol_logger
