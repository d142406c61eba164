"""Token strategies used by the TokenIssuer.

Each provider turns a ticket into a token string and back. The issuer
never needs to know whether a token is a store key, an encrypted ticket
or a signed JWT.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import jwt

from fedgate.core.errors import InvalidOrExpiredToken, InvalidTicket
from fedgate.core.oauth.grants import GrantStore
from fedgate.core.oauth.tickets import ClaimsSet, Ticket, TicketFormat

DEFAULT_ACCESS_TOKEN_LIFETIME = timedelta(seconds=1200)
ACCESS_TOKEN_ALGORITHM = "HS256"


class TokenProvider(Protocol):
    """Creates tokens from tickets and receives them back."""

    def create(self, ticket: Ticket) -> str: ...

    def receive(self, token: str) -> Ticket: ...


class AuthorizationCodeProvider:
    """Codes are opaque keys into the GrantStore; receiving one consumes it."""

    def __init__(self, store: GrantStore) -> None:
        self.store = store

    def create(self, ticket: Ticket) -> str:
        return self.store.issue_code(ticket)

    def receive(self, token: str) -> Ticket:
        return self.store.redeem_code(token)


class RefreshTokenProvider:
    """Refresh tokens are protected tickets, valid until the secret changes."""

    def __init__(self, ticket_format: TicketFormat) -> None:
        self.ticket_format = ticket_format

    def create(self, ticket: Ticket) -> str:
        return self.ticket_format.protect(ticket)

    def receive(self, token: str) -> Ticket:
        return self.ticket_format.unprotect(token)


class AccessTokenProvider:
    """Access tokens are short-lived HS256 JWTs carrying the ticket."""

    def __init__(
        self,
        secret: str | bytes,
        issuer: str = "fedgate",
        lifetime: timedelta = DEFAULT_ACCESS_TOKEN_LIFETIME,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        self._key = hashlib.sha256(b"access-token:" + secret).hexdigest()
        self.issuer = issuer
        self.lifetime = lifetime
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def expires_in(self) -> int:
        return int(self.lifetime.total_seconds())

    def create(self, ticket: Ticket) -> str:
        now = self._clock()
        payload = {
            "iss": self.issuer,
            "sub": ticket.name,
            "iat": int(now.timestamp()),
            "exp": int((now + self.lifetime).timestamp()),
            "ticket": ticket.to_dict(),
        }
        return jwt.encode(payload, self._key, algorithm=ACCESS_TOKEN_ALGORITHM)

    def decode(self, token: str) -> dict[str, Any]:
        """Verify and decode an access token.

        Raises:
            InvalidOrExpiredToken: On a bad signature, wrong issuer or expiry.
        """
        if not token:
            raise InvalidOrExpiredToken("Empty access token")
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[ACCESS_TOKEN_ALGORITHM],
                issuer=self.issuer,
                # Time claims are checked against our own clock
                options={
                    "require": ["exp", "iat", "sub"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            raise InvalidOrExpiredToken(f"Invalid access token: {e}") from e

        if payload["exp"] <= int(self._clock().timestamp()):
            raise InvalidOrExpiredToken("Access token has expired")
        return payload

    def receive(self, token: str) -> Ticket:
        return self._ticket(self.decode(token))

    def validate_bearer_token(self, access_token: str) -> ClaimsSet:
        """Validate an access token and return its claims."""
        payload = self.decode(access_token)
        expires_at = datetime.fromtimestamp(payload["exp"], UTC)
        return ClaimsSet.from_ticket(self._ticket(payload), expires_at)

    def _ticket(self, payload: dict[str, Any]) -> Ticket:
        try:
            return Ticket.from_dict(payload.get("ticket") or {})
        except InvalidTicket as e:
            raise InvalidOrExpiredToken(f"Invalid access token: {e}") from e
