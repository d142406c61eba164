"""Client authentication cache.

When the Authorization Server accepts an assertion it remembers the
assertion fingerprint as the client secret of the asserted subject. The
Token endpoint later checks presented secrets against this cache.
"""

from __future__ import annotations

import hmac
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

logger = logging.getLogger(__name__)


class ClientAuthCache:
    """client_id -> expected secret, with an optional time-to-live."""

    def __init__(
        self,
        ttl: timedelta | None = timedelta(seconds=300),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: dict[str, tuple[str, datetime]] = {}
        self._lock = threading.Lock()

    def remember(self, client_id: str, secret: str) -> None:
        """Store (or replace) the expected secret for ``client_id``."""
        with self._lock:
            self._purge_locked()
            self._entries[client_id] = (secret, self._clock())

    def verify(self, client_id: str | None, presented: str | None) -> bool:
        """Constant-time check of a presented secret."""
        if not client_id or presented is None:
            return False
        with self._lock:
            entry = self._entries.get(client_id)
            if entry is not None and self._expired(entry[1]):
                del self._entries[client_id]
                entry = None
        if entry is None:
            return False
        return hmac.compare_digest(entry[0].encode("utf-8"), presented.encode("utf-8"))

    def forget(self, client_id: str) -> None:
        with self._lock:
            self._entries.pop(client_id, None)

    def _expired(self, stored_at: datetime) -> bool:
        return self._ttl is not None and self._clock() - stored_at > self._ttl

    def _purge_locked(self) -> None:
        if self._ttl is None:
            return
        stale = [k for k, (_, stored_at) in self._entries.items() if self._expired(stored_at)]
        for client_id in stale:
            del self._entries[client_id]
        if stale:
            logger.debug("Purged %d expired client secrets", len(stale))

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked()
            return len(self._entries)
