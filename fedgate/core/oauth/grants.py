"""Single-use storage for authorization codes and pending login flows.

Both maps hand out each entry at most once: a read is a removal, done
under a lock, so of two concurrent redemptions of the same code exactly
one succeeds.

Entries are kept until consumed unless ``max_age`` is set, in which case
older entries are treated as absent and purged lazily on access.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Generic, TypeVar

from fedgate.core.errors import InvalidOrUsedCode, UnknownOrUsedState
from fedgate.core.oauth.tickets import Ticket

logger = logging.getLogger(__name__)

# 256-bit codes and state ids
TOKEN_BYTES = 32

V = TypeVar("V")


def generate_code() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_state_id() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


@dataclass(frozen=True)
class AuthorizationCode:
    """A pending grant, owned by the store until redeemed."""

    code: str
    ticket: Ticket
    created_at: datetime


@dataclass(frozen=True)
class PendingFlowState:
    """Correlates a relayed assertion with the redirect that completes it."""

    state_id: str
    federated_subject: str
    assertion_fingerprint: str
    created_at: datetime


class SingleUseMap(Generic[V]):
    """Thread-safe map whose entries can be taken exactly once."""

    def __init__(
        self,
        max_age: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._entries: dict[str, tuple[datetime, V]] = {}
        self._lock = threading.Lock()
        self._max_age = max_age
        self._clock = clock or (lambda: datetime.now(UTC))

    def put(self, key: str, value: V) -> datetime:
        """Store ``value``; raises ValueError if ``key`` is already pending."""
        with self._lock:
            self._purge_locked()
            if key in self._entries:
                raise ValueError(f"Duplicate key {key!r}")
            created_at = self._clock()
            self._entries[key] = (created_at, value)
            return created_at

    def take(self, key: str) -> V | None:
        """Remove and return the entry, or None if absent or too old."""
        with self._lock:
            entry = self._entries.pop(key, None)
            self._purge_locked()
        if entry is None:
            return None
        created_at, value = entry
        if self._expired(created_at):
            return None
        return value

    def _expired(self, created_at: datetime) -> bool:
        return self._max_age is not None and self._clock() - created_at > self._max_age

    def _purge_locked(self) -> None:
        if self._max_age is None:
            return
        stale = [k for k, (created, _) in self._entries.items() if self._expired(created)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Purged %d expired entries", len(stale))

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked()
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            self._purge_locked()
            return key in self._entries


class GrantStore:
    """Pending authorization codes and pending flow states."""

    def __init__(
        self,
        code_max_age: timedelta | None = None,
        flow_max_age: timedelta | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._codes: SingleUseMap[AuthorizationCode] = SingleUseMap(code_max_age, self._clock)
        self._flows: SingleUseMap[PendingFlowState] = SingleUseMap(flow_max_age, self._clock)

    # Authorization codes

    def issue_code(self, ticket: Ticket) -> str:
        code = generate_code()
        self._codes.put(code, AuthorizationCode(code=code, ticket=ticket, created_at=self._clock()))
        logger.debug("Issued authorization code for %s", ticket.name)
        return code

    def redeem_code(self, code: str) -> Ticket:
        """Take the ticket behind ``code``.

        Raises:
            InvalidOrUsedCode: If the code is unknown, already redeemed or expired.
        """
        entry = self._codes.take(code) if code else None
        if entry is None:
            raise InvalidOrUsedCode("Authorization code is invalid or has already been used")
        return entry.ticket

    @property
    def pending_codes(self) -> int:
        return len(self._codes)

    # Pending flows

    def begin_flow(
        self, state_id: str, subject: str, fingerprint: str
    ) -> PendingFlowState:
        """Record a pending flow; raises ValueError on a duplicate state id."""
        state = PendingFlowState(
            state_id=state_id,
            federated_subject=subject,
            assertion_fingerprint=fingerprint,
            created_at=self._clock(),
        )
        self._flows.put(state_id, state)
        return state

    def end_flow(self, state_id: str) -> PendingFlowState:
        """Take the pending flow for ``state_id``.

        Raises:
            UnknownOrUsedState: If no flow is pending under ``state_id``.
        """
        state = self._flows.take(state_id) if state_id else None
        if state is None:
            raise UnknownOrUsedState("State does not match a pending login")
        return state

    @property
    def pending_flows(self) -> int:
        return len(self._flows)
