"""Bearer token enforcement at the protected resource."""

from __future__ import annotations

import logging
from typing import Any, Protocol

from fedgate.core.errors import InvalidOrExpiredToken, Unauthenticated
from fedgate.core.oauth.tickets import ClaimsSet

logger = logging.getLogger(__name__)


class BearerTokenValidator(Protocol):
    def validate_bearer_token(self, access_token: str) -> ClaimsSet: ...


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


class ResourceGuard:
    """Turns an Authorization header into claims, or refuses access."""

    def __init__(self, validator: BearerTokenValidator) -> None:
        self.validator = validator

    def authorize(self, authorization: str | None) -> ClaimsSet:
        """Authorize a request from its Authorization header value.

        Raises:
            Unauthenticated: With an RFC 6750 challenge when the header is
                missing, not a bearer token or the token is not valid.
        """
        token = parse_bearer(authorization)
        if token is None:
            raise Unauthenticated("Bearer token required")
        try:
            claims = self.validator.validate_bearer_token(token)
        except InvalidOrExpiredToken as e:
            logger.info("Rejected bearer token: %s", e)
            raise Unauthenticated(
                "Bearer token rejected",
                error_description="The access token is invalid or has expired",
            ) from e
        logger.debug("Authorized %s with scopes %s", claims.name, claims.scopes)
        return claims

    def authorize_request(self, request: Any) -> ClaimsSet:
        """Authorize a request object exposing ``headers`` (Flask, httpx)."""
        return self.authorize(request.headers.get("Authorization"))
