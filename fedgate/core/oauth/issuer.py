"""Token issuance for the Authorization Server.

The TokenIssuer owns the grant lifecycle: it authenticates clients,
issues single-use authorization codes, exchanges them for access and
refresh tokens and validates bearer tokens.

Client authentication is non-standard: the client id is the federated
subject and its secret is the fingerprint of the SAML token that was
accepted for that subject (see ``remember_assertion``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fedgate.core.errors import InvalidGrant, UnauthenticatedClient
from fedgate.core.oauth.cache import ClientAuthCache
from fedgate.core.oauth.providers import (
    AccessTokenProvider,
    AuthorizationCodeProvider,
    RefreshTokenProvider,
)
from fedgate.core.oauth.tickets import ClaimsSet, Ticket
from fedgate.core.saml.utils import assertion_fingerprint
from fedgate.core.trust import TrustRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    """Token endpoint success response."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "bearer"

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
        }


class TokenIssuer:
    """Authorization Server token logic, independent of HTTP."""

    def __init__(
        self,
        clients: TrustRegistry,
        client_auth: ClientAuthCache,
        codes: AuthorizationCodeProvider,
        refresh_tokens: RefreshTokenProvider,
        access_tokens: AccessTokenProvider,
    ) -> None:
        self.clients = clients
        self.client_auth = client_auth
        self.codes = codes
        self.refresh_tokens = refresh_tokens
        self.access_tokens = access_tokens

    # Client authentication

    def remember_assertion(self, subject: str, saml_token: str) -> str:
        """Record the accepted SAML token as ``subject``'s client secret.

        Returns:
            The fingerprint the client must present at the Token endpoint.
        """
        fingerprint = assertion_fingerprint(saml_token)
        self.client_auth.remember(subject, fingerprint)
        return fingerprint

    def authenticate_client(self, client_id: str | None, presented_secret: str | None) -> bool:
        ok = self.client_auth.verify(client_id, presented_secret)
        if not ok:
            logger.info("Client authentication failed for %r", client_id)
        return ok

    def validate_redirect_uri(self, client_id: str | None, supplied_uri: str | None) -> bool:
        """True only for a registered client presenting its exact redirect URI."""
        if not client_id or not supplied_uri or not self.clients.is_trusted(client_id):
            return False
        return self.clients[client_id] == supplied_uri

    # Grants

    def issue_authorization_code(self, ticket: Ticket) -> str:
        code = self.codes.create(ticket)
        logger.info(
            "Issued authorization code to %s for scopes %s",
            ticket.client_id,
            " ".join(ticket.scopes) or "<none>",
        )
        return code

    def exchange_code_for_token(
        self,
        code: str,
        client_auth_ok: bool,
        *,
        client_id: str | None = None,
        redirect_uri: str | None = None,
    ) -> TokenPair:
        """Redeem an authorization code.

        Client authentication is checked before the code is touched, so a
        failed authentication does not burn the code.

        Raises:
            UnauthenticatedClient: If ``client_auth_ok`` is false.
            InvalidGrant: If the code is unknown or used, or was issued to
                another client or redirect URI.
        """
        if not client_auth_ok:
            raise UnauthenticatedClient("Client authentication failed")

        ticket = self.codes.receive(code)

        if client_id is not None and ticket.client_id != client_id:
            logger.warning("Code issued to %r redeemed by %r", ticket.client_id, client_id)
            raise InvalidGrant("Authorization code was issued to another client")
        if redirect_uri is not None and ticket.redirect_uri != redirect_uri:
            raise InvalidGrant("redirect_uri does not match the authorization request")

        return self._token_pair(ticket, self.refresh_tokens.create(ticket))

    def refresh_access_token(self, refresh_token: str, client_id: str | None = None) -> TokenPair:
        """Mint a new access token from a refresh token.

        The refresh token is returned unchanged and stays valid.

        Raises:
            InvalidTicket: If the refresh token cannot be unprotected.
            InvalidGrant: If it belongs to a different client.
        """
        ticket = self.refresh_tokens.receive(refresh_token)
        if client_id is not None and ticket.client_id != client_id:
            raise InvalidGrant("Refresh token was issued to another client")
        return self._token_pair(ticket, refresh_token)

    def validate_bearer_token(self, access_token: str) -> ClaimsSet:
        """Raises InvalidOrExpiredToken for bad, altered or expired tokens."""
        return self.access_tokens.validate_bearer_token(access_token)

    def _token_pair(self, ticket: Ticket, refresh_token: str) -> TokenPair:
        return TokenPair(
            access_token=self.access_tokens.create(ticket),
            refresh_token=refresh_token,
            expires_in=self.access_tokens.expires_in,
        )
