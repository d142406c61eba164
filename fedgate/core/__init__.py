"""Core federation protocol: assertions, grants, tokens and flows."""

from fedgate.core.logging import (
    HTTPExchange,
    LoggingClient,
    LogLevel,
    ProtocolLog,
    ProtocolLogger,
    configure_logging,
    get_protocol_logger,
    redact_sensitive,
    set_protocol_logger,
)

__all__ = [
    "HTTPExchange",
    "LoggingClient",
    "LogLevel",
    "ProtocolLog",
    "ProtocolLogger",
    "configure_logging",
    "get_protocol_logger",
    "redact_sensitive",
    "set_protocol_logger",
]
