"""Pytest configuration and fixtures."""

from collections.abc import Callable, Generator

import pytest
from flask import Flask
from flask.testing import FlaskClient

from fedgate.app import create_app
from fedgate.core.auth import CredentialStore
from fedgate.core.config import (
    AppConfig,
    AuthorizationServerSettings,
    ClientSettings,
    IdentityProviderSettings,
)
from fedgate.core.crypto.certs import SigningCredentials, generate_signing_credentials
from fedgate.core.saml.assertion import AssertionService
from fedgate.core.saml.validator import AssertionValidator
from fedgate.core.trust import FederatedIdentityMap, TrustRegistry

CLIENT_URL = "http://client.test"
IDP_URL = "http://idp.test"
AUTHZ_URL = "http://authz.test"
RESOURCE_URL = "http://resource.test"

TOKEN_SECRET = "test-token-secret"

# Keeps PBKDF2 fast in tests
TEST_ITERATIONS = 1_000

ALL_SERVICES = ["idp", "authz", "client", "resource"]


@pytest.fixture(scope="session")
def signing_credentials() -> SigningCredentials:
    """One IdP signing key pair for the whole test session."""
    return generate_signing_credentials()


@pytest.fixture
def app_config() -> AppConfig:
    """Configuration wiring the four services to fake test hosts."""
    return AppConfig(
        identity_provider=IdentityProviderSettings(
            trusted_requesters={CLIENT_URL: f"{CLIENT_URL}/Client/AuthnResponse"},
            identity_mappings={"user": "federatedusername"},
            users={"user": "password"},
        ),
        authorization_server=AuthorizationServerSettings(
            clients={"federatedusername": f"{CLIENT_URL}/Client/OAuthRedirect"},
            decline_redirect_url=CLIENT_URL,
        ),
        client=ClientSettings(
            base_url=CLIENT_URL,
            idp_sso_url=f"{IDP_URL}/SAML/AuthnRequest",
            saml_authorize_url=f"{AUTHZ_URL}/OAuth/SAMLAuthorize",
            token_url=f"{AUTHZ_URL}/OAuth/Token",
            resource_url=f"{RESOURCE_URL}/api/Resource",
        ),
    )


@pytest.fixture
def make_app(
    app_config: AppConfig, signing_credentials: SigningCredentials
) -> Callable[..., Flask]:
    """Factory for apps hosting a subset of the services."""

    def _make(services: list[str], mounts: dict | None = None, **overrides) -> Flask:
        config = {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key",
            "SERVICES": services,
            "TOKEN_SECRET": TOKEN_SECRET,
            "SIGNING_CREDENTIALS": signing_credentials,
            "PASSWORD_HASH_ITERATIONS": TEST_ITERATIONS,
            "FEDERATION_HTTP_MOUNTS": mounts,
        }
        config.update(overrides)
        return create_app(config, app_config=app_config)

    return _make


@pytest.fixture
def app(make_app: Callable[..., Flask]) -> Generator[Flask, None, None]:
    """Create application hosting all four services."""
    app = make_app(ALL_SERVICES)
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()


@pytest.fixture
def identities() -> FederatedIdentityMap:
    return FederatedIdentityMap(
        {"user": "federatedusername", "other": "othersubject"},
    )


@pytest.fixture
def assertion_service(
    identities: FederatedIdentityMap, signing_credentials: SigningCredentials
) -> AssertionService:
    return AssertionService(
        issuer="SAMLIdentityProvider",
        identities=identities,
        requesters=TrustRegistry({CLIENT_URL: f"{CLIENT_URL}/Client/AuthnResponse"}),
        private_key=signing_credentials.private_key,
        certificate=signing_credentials.certificate,
    )


@pytest.fixture
def assertion_validator(
    identities: FederatedIdentityMap, signing_credentials: SigningCredentials
) -> AssertionValidator:
    return AssertionValidator(
        trusted_issuers=TrustRegistry({"SAMLIdentityProvider": None}),
        identities=FederatedIdentityMap(known_subjects=identities.known_subjects),
        certificate=signing_credentials.certificate,
    )


@pytest.fixture
def credential_store() -> CredentialStore:
    return CredentialStore.from_plaintext({"user": "password"}, iterations=TEST_ITERATIONS)
