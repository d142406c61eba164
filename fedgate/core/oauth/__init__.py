"""OAuth2 authorization-code grant: tickets, codes, tokens and bearer checks."""

from fedgate.core.oauth.cache import ClientAuthCache
from fedgate.core.oauth.grants import AuthorizationCode, GrantStore, PendingFlowState
from fedgate.core.oauth.issuer import TokenIssuer, TokenPair
from fedgate.core.oauth.providers import (
    AccessTokenProvider,
    AuthorizationCodeProvider,
    RefreshTokenProvider,
    TokenProvider,
)
from fedgate.core.oauth.resource import ResourceGuard, parse_bearer
from fedgate.core.oauth.tickets import (
    NAME_CLAIM,
    SCOPE_CLAIM,
    ClaimsSet,
    Ticket,
    TicketFormat,
    split_scope,
)

__all__ = [
    "NAME_CLAIM",
    "SCOPE_CLAIM",
    "AccessTokenProvider",
    "AuthorizationCode",
    "AuthorizationCodeProvider",
    "ClaimsSet",
    "ClientAuthCache",
    "GrantStore",
    "PendingFlowState",
    "RefreshTokenProvider",
    "ResourceGuard",
    "Ticket",
    "TicketFormat",
    "TokenIssuer",
    "TokenPair",
    "TokenProvider",
    "parse_bearer",
    "split_scope",
]
