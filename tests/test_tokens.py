"""Tests for tickets, token providers and the TokenIssuer."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from fedgate.core.errors import (
    InvalidGrant,
    InvalidOrExpiredToken,
    InvalidOrUsedCode,
    InvalidTicket,
    UnauthenticatedClient,
)
from fedgate.core.oauth.cache import ClientAuthCache
from fedgate.core.oauth.grants import GrantStore
from fedgate.core.oauth.issuer import TokenIssuer
from fedgate.core.oauth.providers import (
    AccessTokenProvider,
    AuthorizationCodeProvider,
    RefreshTokenProvider,
)
from fedgate.core.oauth.tickets import (
    NAME_CLAIM,
    SCOPE_CLAIM,
    ClaimsSet,
    Ticket,
    TicketFormat,
    split_scope,
)
from fedgate.core.saml.utils import assertion_fingerprint
from fedgate.core.trust import TrustRegistry

REDIRECT_URI = "http://client.test/Client/OAuthRedirect"
SECRET = "token-secret"


@pytest.fixture
def ticket() -> Ticket:
    return Ticket.for_grant(
        "federatedusername", ["photos", "documents"], "federatedusername", REDIRECT_URI
    )


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(
        clients=TrustRegistry({"federatedusername": REDIRECT_URI}),
        client_auth=ClientAuthCache(),
        codes=AuthorizationCodeProvider(GrantStore()),
        refresh_tokens=RefreshTokenProvider(TicketFormat(SECRET, "refresh_token")),
        access_tokens=AccessTokenProvider(SECRET),
    )


class TestTickets:
    def test_split_scope(self):
        assert split_scope("photos documents photos") == ["photos", "documents"]
        assert split_scope(None) == []
        assert split_scope("  ") == []

    def test_for_grant(self, ticket):
        assert ticket.claims[0] == (NAME_CLAIM, "federatedusername")
        assert ticket.scopes == ["photos", "documents"]
        assert ticket.client_id == "federatedusername"
        assert ticket.redirect_uri == REDIRECT_URI
        assert "issued_at" in ticket.properties

    def test_from_dict_rejects_missing_name(self):
        with pytest.raises(InvalidTicket):
            Ticket.from_dict({"claims": []})

    def test_listing(self, ticket):
        listing = ClaimsSet.from_ticket(ticket).format_listing()
        assert listing.splitlines() == [
            "User with following claims accessed the resource: ",
            f"{NAME_CLAIM} federatedusername",
            f"{SCOPE_CLAIM} photos",
            f"{SCOPE_CLAIM} documents",
        ]


class TestTicketFormat:
    def test_protect_unprotect(self, ticket):
        fmt = TicketFormat(SECRET)
        assert fmt.unprotect(fmt.protect(ticket)) == ticket

    def test_other_secret(self, ticket):
        protected = TicketFormat(SECRET).protect(ticket)
        with pytest.raises(InvalidTicket):
            TicketFormat("another-secret").unprotect(protected)

    def test_purposes_are_separated(self, ticket):
        protected = TicketFormat(SECRET, "refresh_token").protect(ticket)
        with pytest.raises(InvalidTicket):
            TicketFormat(SECRET, "ticket").unprotect(protected)

    @pytest.mark.parametrize("value", ["", "garbage", "gAAAAABé"])
    def test_garbage(self, value):
        with pytest.raises(InvalidTicket):
            TicketFormat(SECRET).unprotect(value)


class TestAccessTokenProvider:
    def test_validate(self, ticket):
        provider = AccessTokenProvider(SECRET)
        claims = provider.validate_bearer_token(provider.create(ticket))

        assert claims.name == "federatedusername"
        assert claims.scopes == ["photos", "documents"]
        assert claims.client_id == "federatedusername"
        assert claims.expires_at > datetime.now(UTC)

    def test_default_lifetime(self):
        assert AccessTokenProvider(SECRET).expires_in == 1200

    def test_expired(self, ticket):
        now = datetime.now(UTC)
        issued = AccessTokenProvider(SECRET, clock=lambda: now).create(ticket)
        later = AccessTokenProvider(SECRET, clock=lambda: now + timedelta(seconds=1201))

        with pytest.raises(InvalidOrExpiredToken):
            later.validate_bearer_token(issued)

    def test_tampered(self, ticket):
        token = AccessTokenProvider(SECRET).create(ticket)
        header, payload, signature = token.split(".")
        flipped = "A" if signature[0] != "A" else "B"
        with pytest.raises(InvalidOrExpiredToken):
            AccessTokenProvider(SECRET).validate_bearer_token(
                f"{header}.{payload}.{flipped}{signature[1:]}"
            )

    def test_other_secret(self, ticket):
        token = AccessTokenProvider(SECRET).create(ticket)
        with pytest.raises(InvalidOrExpiredToken):
            AccessTokenProvider("another-secret").validate_bearer_token(token)

    def test_unsigned_token_rejected(self, ticket):
        token = jwt.encode(
            {"sub": "federatedusername", "iss": "fedgate", "iat": 0, "exp": 2**31},
            key=None,
            algorithm="none",
        )
        with pytest.raises(InvalidOrExpiredToken):
            AccessTokenProvider(SECRET).validate_bearer_token(token)

    @pytest.mark.parametrize("token", ["", "not.a.jwt"])
    def test_garbage(self, token):
        with pytest.raises(InvalidOrExpiredToken):
            AccessTokenProvider(SECRET).validate_bearer_token(token)


class TestTokenIssuer:
    def test_validate_redirect_uri(self, issuer):
        assert issuer.validate_redirect_uri("federatedusername", REDIRECT_URI)
        assert not issuer.validate_redirect_uri("federatedusername", REDIRECT_URI + "/")
        assert not issuer.validate_redirect_uri("federatedusername", None)
        assert not issuer.validate_redirect_uri("unknown", REDIRECT_URI)
        assert not issuer.validate_redirect_uri(None, REDIRECT_URI)

    def test_remember_assertion(self, issuer):
        fingerprint = issuer.remember_assertion("federatedusername", "PHNhbWw+")

        assert fingerprint == assertion_fingerprint("PHNhbWw+")
        assert issuer.authenticate_client("federatedusername", fingerprint)
        assert not issuer.authenticate_client("federatedusername", "PHNhbWw+")

    def test_remember_line_wrapped_assertion(self, issuer):
        wrapped = "PHNhbWxw\r\nOlJlc3Bv\r\nbnNlLz4="
        fingerprint = issuer.remember_assertion("federatedusername", wrapped)

        # Both sides hash the token exactly as it was posted
        assert fingerprint == assertion_fingerprint(wrapped)
        assert issuer.authenticate_client("federatedusername", fingerprint)
        assert not issuer.authenticate_client(
            "federatedusername", assertion_fingerprint(wrapped.replace("\r\n", ""))
        )

    def test_exchange(self, issuer, ticket):
        code = issuer.issue_authorization_code(ticket)

        pair = issuer.exchange_code_for_token(
            code, True, client_id="federatedusername", redirect_uri=REDIRECT_URI
        )

        assert pair.token_type == "bearer"
        assert pair.expires_in == 1200
        assert issuer.validate_bearer_token(pair.access_token).name == "federatedusername"
        assert pair.to_dict()["refresh_token"] == pair.refresh_token

    def test_code_is_single_use(self, issuer, ticket):
        code = issuer.issue_authorization_code(ticket)
        issuer.exchange_code_for_token(code, True)

        with pytest.raises(InvalidOrUsedCode):
            issuer.exchange_code_for_token(code, True)

    def test_failed_client_auth_keeps_code(self, issuer, ticket):
        code = issuer.issue_authorization_code(ticket)

        with pytest.raises(UnauthenticatedClient):
            issuer.exchange_code_for_token(code, False)

        assert issuer.exchange_code_for_token(code, True).access_token

    def test_code_for_another_client(self, issuer, ticket):
        code = issuer.issue_authorization_code(ticket)
        with pytest.raises(InvalidGrant):
            issuer.exchange_code_for_token(code, True, client_id="othersubject")

    def test_redirect_uri_mismatch(self, issuer, ticket):
        code = issuer.issue_authorization_code(ticket)
        with pytest.raises(InvalidGrant):
            issuer.exchange_code_for_token(code, True, redirect_uri="http://evil.test/cb")

    def test_refresh(self, issuer, ticket):
        code = issuer.issue_authorization_code(ticket)
        pair = issuer.exchange_code_for_token(code, True)

        first = issuer.refresh_access_token(pair.refresh_token)
        second = issuer.refresh_access_token(pair.refresh_token, client_id="federatedusername")

        assert first.refresh_token == pair.refresh_token
        assert second.refresh_token == pair.refresh_token
        assert issuer.validate_bearer_token(second.access_token).scopes == ["photos", "documents"]

    def test_refresh_for_another_client(self, issuer, ticket):
        pair = issuer.exchange_code_for_token(issuer.issue_authorization_code(ticket), True)
        with pytest.raises(InvalidGrant):
            issuer.refresh_access_token(pair.refresh_token, client_id="othersubject")

    def test_refresh_garbage(self, issuer):
        with pytest.raises(InvalidTicket):
            issuer.refresh_access_token("garbage")
