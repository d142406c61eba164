"""Authentication tickets and their protected (serialized) form.

A ticket is the Authorization Server's record of a grant: who the user
is, which claims were granted and to which client. Authorization codes
point at tickets, refresh tokens *are* protected tickets and access
tokens carry a ticket in their payload.
"""

from __future__ import annotations

import base64
import hashlib
import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from fedgate.core.errors import InvalidTicket

NAME_CLAIM = "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name"
SCOPE_CLAIM = "urn:oauth:scope"

DEFAULT_AUTH_TYPE = "Bearer"


def split_scope(scope: str | None) -> list[str]:
    """Split a space-delimited OAuth scope string, dropping duplicates."""
    seen: list[str] = []
    for item in (scope or "").split():
        if item not in seen:
            seen.append(item)
    return seen


@dataclass
class Ticket:
    """An authenticated identity with its claims and grant properties."""

    name: str
    auth_type: str = DEFAULT_AUTH_TYPE
    claims: list[tuple[str, str]] = field(default_factory=list)
    properties: dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_grant(
        cls,
        subject: str,
        scopes: Iterable[str],
        client_id: str,
        redirect_uri: str,
        issued_at: datetime | None = None,
    ) -> Ticket:
        """Ticket for a user granting ``scopes`` to ``client_id``."""
        claims = [(NAME_CLAIM, subject)]
        claims.extend((SCOPE_CLAIM, scope) for scope in scopes)
        issued_at = issued_at or datetime.now(UTC)
        return cls(
            name=subject,
            claims=claims,
            properties={
                "client_id": client_id,
                "redirect_uri": redirect_uri,
                "issued_at": issued_at.isoformat(),
            },
        )

    @property
    def scopes(self) -> list[str]:
        return [value for claim_type, value in self.claims if claim_type == SCOPE_CLAIM]

    @property
    def client_id(self) -> str | None:
        return self.properties.get("client_id")

    @property
    def redirect_uri(self) -> str | None:
        return self.properties.get("redirect_uri")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "name": self.name,
            "auth_type": self.auth_type,
            "claims": [[claim_type, value] for claim_type, value in self.claims],
            "properties": dict(self.properties),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Ticket:
        """Reconstruct from dictionary.

        Raises:
            InvalidTicket: If required fields are missing or malformed.
        """
        try:
            return cls(
                name=str(data["name"]),
                auth_type=str(data.get("auth_type", DEFAULT_AUTH_TYPE)),
                claims=[(str(t), str(v)) for t, v in data.get("claims", [])],
                properties={str(k): str(v) for k, v in (data.get("properties") or {}).items()},
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidTicket(f"Malformed ticket: {e}") from e


@dataclass(frozen=True)
class ClaimsSet:
    """Claims of a validated bearer token, as seen by the resource server."""

    name: str
    claims: tuple[tuple[str, str], ...]
    client_id: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_ticket(cls, ticket: Ticket, expires_at: datetime | None = None) -> ClaimsSet:
        return cls(
            name=ticket.name,
            claims=tuple(ticket.claims),
            client_id=ticket.client_id,
            expires_at=expires_at,
        )

    @property
    def scopes(self) -> list[str]:
        return [value for claim_type, value in self.claims if claim_type == SCOPE_CLAIM]

    def __iter__(self) -> Iterator[tuple[str, str]]:
        return iter(self.claims)

    def __len__(self) -> int:
        return len(self.claims)

    def values(self, claim_type: str) -> list[str]:
        return [value for t, value in self.claims if t == claim_type]

    def format_listing(self) -> str:
        """Plain-text listing returned by the protected resource."""
        lines = ["User with following claims accessed the resource: "]
        lines.extend(f"{claim_type} {value}" for claim_type, value in self.claims)
        return "\n".join(lines) + "\n"


def derive_key(secret: str | bytes, purpose: str) -> bytes:
    """Derive a purpose-bound 32-byte key from the shared token secret."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    return hashlib.sha256(purpose.encode("utf-8") + b":" + secret).digest()


class TicketFormat:
    """Protects tickets with Fernet (AES-CBC + HMAC) under the token secret.

    Protected tickets carry no expiry: a refresh token stays usable for as
    long as the secret is unchanged.
    """

    def __init__(self, secret: str | bytes, purpose: str = "ticket") -> None:
        self._fernet = Fernet(base64.urlsafe_b64encode(derive_key(secret, purpose)))

    def protect(self, ticket: Ticket) -> str:
        payload = json.dumps(ticket.to_dict(), separators=(",", ":")).encode("utf-8")
        return self._fernet.encrypt(payload).decode("ascii")

    def unprotect(self, protected: str) -> Ticket:
        """Decrypt a protected ticket.

        Raises:
            InvalidTicket: If the value was not produced with this secret
                or has been altered.
        """
        if not protected:
            raise InvalidTicket("Empty ticket")
        try:
            payload = self._fernet.decrypt(protected.encode("ascii"))
        except (InvalidToken, UnicodeEncodeError) as e:
            raise InvalidTicket("Ticket could not be unprotected") from e

        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidTicket(f"Ticket payload is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidTicket("Ticket payload is not an object")
        return Ticket.from_dict(data)
