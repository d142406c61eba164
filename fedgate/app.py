"""Flask application factory."""

from __future__ import annotations

import logging
import os
import secrets
import ssl
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

from flask import Flask

from fedgate.core.auth import DEFAULT_ITERATIONS, CredentialStore
from fedgate.core.config import DEFAULT_CONFIG_DIR, AppConfig, load_config
from fedgate.core.crypto.certs import (
    CertificateError,
    SigningCredentials,
    ensure_signing_credentials,
    get_cert_dir,
    load_certificate,
    load_signing_credentials,
)
from fedgate.core.errors import ConfigurationError
from fedgate.core.flows.gateway import FederationGateway
from fedgate.core.flows.orchestrator import FlowOrchestrator
from fedgate.core.logging import ProtocolLogger, configure_logging, get_protocol_logger
from fedgate.core.oauth.cache import ClientAuthCache
from fedgate.core.oauth.grants import GrantStore
from fedgate.core.oauth.issuer import TokenIssuer
from fedgate.core.oauth.providers import (
    AccessTokenProvider,
    AuthorizationCodeProvider,
    RefreshTokenProvider,
)
from fedgate.core.oauth.resource import ResourceGuard
from fedgate.core.oauth.tickets import TicketFormat
from fedgate.core.saml.assertion import AssertionService
from fedgate.core.saml.validator import AssertionValidator
from fedgate.core.trust import FederatedIdentityMap, TrustRegistry

logger = logging.getLogger(__name__)

EXTENSION_KEY = "fedgate"


@dataclass
class FederationServices:
    """Per-app service container, stored in ``app.extensions``.

    Only the components of the hosted services are built; the rest stay None.
    """

    config: AppConfig
    services: tuple[str, ...]
    protocol_logger: ProtocolLogger
    credentials: CredentialStore | None = None
    requesters: TrustRegistry | None = None
    assertion_service: AssertionService | None = None
    assertion_validator: AssertionValidator | None = None
    token_issuer: TokenIssuer | None = None
    orchestrator: FlowOrchestrator | None = None
    resource_guard: ResourceGuard | None = None

    def hosts(self, service: str) -> bool:
        return service in self.services


def _load_or_create_secret(path: Path) -> str:
    """Read a persisted random secret, creating it on first use."""
    if path.exists():
        return path.read_text().strip()
    secret = secrets.token_hex(32)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(secret)
    path.chmod(0o600)
    return secret


def _signing_credentials(app_config: AppConfig) -> SigningCredentials:
    idp = app_config.identity_provider
    try:
        if idp.signing_pkcs12_path or (idp.signing_key_path and idp.signing_cert_path):
            return load_signing_credentials(
                key_path=idp.signing_key_path,
                cert_path=idp.signing_cert_path,
                pkcs12_path=idp.signing_pkcs12_path,
                pkcs12_password=idp.signing_pkcs12_password,
            )
        return ensure_signing_credentials(common_name=idp.entity_id)
    except CertificateError as e:
        raise ConfigurationError(f"Cannot load IdP signing credentials: {e}") from e


def _verification_certificate(app_config: AppConfig, signing: SigningCredentials | None):
    """Certificate pinned by the Authorization Server."""
    path = app_config.authorization_server.verification_cert_path
    if path is None and signing is not None:
        return signing.certificate
    path = path or app_config.identity_provider.signing_cert_path or get_cert_dir() / "signing.crt"
    try:
        return load_certificate(path)
    except CertificateError as e:
        raise ConfigurationError(f"Cannot load verification certificate: {e}") from e


def build_services(
    app_config: AppConfig,
    services: tuple[str, ...],
    *,
    token_secret: str,
    signing: SigningCredentials | None = None,
    password_iterations: int = DEFAULT_ITERATIONS,
    http_mounts: dict[str, Any] | None = None,
) -> FederationServices:
    """Wire the components for the given services from configuration."""
    container = FederationServices(
        config=app_config,
        services=services,
        protocol_logger=get_protocol_logger(),
    )
    idp_settings = app_config.identity_provider
    as_settings = app_config.authorization_server

    if "idp" in services:
        signing = signing or _signing_credentials(app_config)
        container.credentials = CredentialStore.from_plaintext(
            idp_settings.users, iterations=password_iterations
        )
        container.requesters = TrustRegistry(
            idp_settings.trusted_requesters, name="trusted requesters"
        )
        container.assertion_service = AssertionService(
            issuer=idp_settings.entity_id,
            identities=FederatedIdentityMap(idp_settings.identity_mappings),
            requesters=container.requesters,
            private_key=signing.private_key,
            certificate=signing.certificate,
            audience=idp_settings.audience,
            lifetime=timedelta(seconds=idp_settings.assertion_lifetime_seconds),
        )

    access_tokens = AccessTokenProvider(
        token_secret,
        issuer=app_config.tokens.issuer,
        lifetime=timedelta(seconds=app_config.tokens.access_token_lifetime_seconds),
    )

    if "authz" in services:
        container.assertion_validator = AssertionValidator(
            trusted_issuers=TrustRegistry(as_settings.trusted_issuers, name="trusted issuers"),
            identities=FederatedIdentityMap(known_subjects=as_settings.federated_subjects),
            certificate=_verification_certificate(app_config, signing),
            clock_skew=timedelta(seconds=as_settings.clock_skew_seconds),
            enforce_validity_window=as_settings.enforce_validity_window,
        )
        code_max_age = as_settings.code_max_age_seconds
        ttl = as_settings.client_auth_ttl_seconds
        container.token_issuer = TokenIssuer(
            clients=TrustRegistry(as_settings.clients, name="registered clients"),
            client_auth=ClientAuthCache(ttl=timedelta(seconds=ttl) if ttl else None),
            codes=AuthorizationCodeProvider(
                GrantStore(code_max_age=timedelta(seconds=code_max_age) if code_max_age else None)
            ),
            refresh_tokens=RefreshTokenProvider(TicketFormat(token_secret, purpose="refresh")),
            access_tokens=access_tokens,
        )

    if "client" in services:
        client_settings = app_config.client
        flow_max_age = client_settings.flow_max_age_seconds
        container.orchestrator = FlowOrchestrator(
            settings=client_settings,
            gateway=FederationGateway(
                client_settings,
                protocol_logger=container.protocol_logger,
                mounts=http_mounts,
            ),
            grants=GrantStore(
                flow_max_age=timedelta(seconds=flow_max_age) if flow_max_age else None
            ),
        )

    if "resource" in services:
        container.resource_guard = ResourceGuard(access_tokens)

    return container


def create_app(config: dict | None = None, app_config: AppConfig | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional Flask configuration overrides. ``SERVICES`` selects
            which of idp, authz, client and resource this app hosts.
        app_config: Application configuration. Loads from file/env if not provided.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)
    config = dict(config or {})
    app_config = app_config or load_config()
    app_config.validate()

    services = tuple(config.get("SERVICES") or app_config.server.services)
    unknown = set(services) - {"idp", "authz", "client", "resource"}
    if unknown:
        raise ConfigurationError(f"Unknown services: {', '.join(sorted(unknown))}")

    secret_key = config.get("SECRET_KEY") or os.environ.get("FEDGATE_SECRET_KEY")
    if not secret_key:
        secret_key = _load_or_create_secret(DEFAULT_CONFIG_DIR / "flask_secret.key")

    # Default configuration
    app.config.from_mapping(
        SECRET_KEY=secret_key,
        # Services on one host share cookies across ports; keep sessions apart
        SESSION_COOKIE_NAME=f"fedgate_{'_'.join(services)}",
        SESSION_COOKIE_HTTPONLY=True,
        TOKEN_SECRET=None,
        SIGNING_CREDENTIALS=None,
        PASSWORD_HASH_ITERATIONS=DEFAULT_ITERATIONS,
        FEDERATION_HTTP_MOUNTS=None,
    )
    app.config.from_mapping(config)
    app.config["SERVICES"] = services

    token_secret = app.config["TOKEN_SECRET"] or app_config.tokens.secret
    if not token_secret and ({"authz", "resource"} & set(services)):
        token_secret = _load_or_create_secret(DEFAULT_CONFIG_DIR / "token_secret.key")

    app.extensions[EXTENSION_KEY] = build_services(
        app_config,
        services,
        token_secret=token_secret or "",
        signing=app.config["SIGNING_CREDENTIALS"],
        password_iterations=app.config["PASSWORD_HASH_ITERATIONS"],
        http_mounts=app.config["FEDERATION_HTTP_MOUNTS"],
    )

    # Register blueprints for the hosted services
    from fedgate.web import routes

    routes.init_app(app, services)

    logger.info("Created app hosting %s", ", ".join(services))
    return app


def create_ssl_context(
    cert_path: Path,
    key_path: Path,
) -> ssl.SSLContext:
    """Create an SSL context for HTTPS.

    Args:
        cert_path: Path to the certificate file (PEM format).
        key_path: Path to the private key file (PEM format).

    Returns:
        Configured SSL context.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.load_cert_chain(str(cert_path), str(key_path))
    return context


def run_server(
    app_config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
    services: list[str] | None = None,
) -> None:
    """Run the Flask development server, optionally with TLS.

    Args:
        app_config: Application configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.
        services: Override the hosted services from config.
    """
    from fedgate.core.crypto.certs import ensure_tls_certificate

    if app_config is None:
        app_config = load_config()

    configure_logging(
        app_config.logging.level,
        trace_enabled=app_config.logging.trace_enabled,
        log_file=app_config.logging.log_file,
    )

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port
    tls_settings = app_config.server.tls

    app = create_app({"SERVICES": services} if services else None, app_config=app_config)
    app.debug = app_config.server.debug

    ssl_context: ssl.SSLContext | None = None

    if tls_settings.enabled:
        tls_config = ensure_tls_certificate(
            cert_path=tls_settings.cert_path,
            key_path=tls_settings.key_path,
            common_name=tls_settings.common_name,
            days_valid=tls_settings.days_valid,
        )
        ssl_context = create_ssl_context(tls_config.cert_path, tls_config.key_path)

        protocol = "https"
        if tls_config.auto_generated:
            print("Auto-generated self-signed TLS certificate:")
            print(f"  Certificate: {tls_config.cert_path}")
            print(f"  Private key: {tls_config.key_path}")
            print("")
    else:
        protocol = "http"

    print("Starting fedgate server...")
    print(f"  Services: {', '.join(app.config['SERVICES'])}")
    print(f"  URL: {protocol}://{server_host}:{server_port}")
    print("")

    app.run(
        host=server_host,
        port=server_port,
        ssl_context=ssl_context,
        threaded=True,
    )
