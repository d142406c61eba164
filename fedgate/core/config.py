"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.

The trust and identity sections are read once at startup and never
mutated afterwards; see ``fedgate.core.trust``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from fedgate.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".fedgate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "FEDGATE_"

# Base URLs of the four cooperating services in the default local setup
DEFAULT_CLIENT_URL = "http://localhost:33222"
DEFAULT_IDP_URL = "http://localhost:33848"
DEFAULT_AUTHZ_URL = "https://localhost:44301"
DEFAULT_RESOURCE_URL = "http://localhost:33367"

SERVICE_NAMES = ("idp", "authz", "client", "resource")


def _optional_path(value: Any) -> Path | None:
    return Path(value).expanduser() if value else None


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


@dataclass
class TLSSettings:
    """TLS/HTTPS configuration settings."""

    enabled: bool = False
    cert_path: Path | None = None
    key_path: Path | None = None
    common_name: str = "localhost"
    days_valid: int = 365

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TLSSettings:
        """Create TLSSettings from a dictionary."""
        return cls(
            enabled=data.get("enabled", False),
            cert_path=_optional_path(data.get("cert_path")),
            key_path=_optional_path(data.get("key_path")),
            common_name=data.get("common_name", "localhost"),
            days_valid=data.get("days_valid", 365),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "enabled": self.enabled,
            "cert_path": str(self.cert_path) if self.cert_path else None,
            "key_path": str(self.key_path) if self.key_path else None,
            "common_name": self.common_name,
            "days_valid": self.days_valid,
        }


@dataclass
class ServerSettings:
    """Server configuration settings."""

    host: str = "127.0.0.1"
    port: int = 33222
    debug: bool = False
    services: list[str] = field(default_factory=lambda: list(SERVICE_NAMES))
    tls: TLSSettings = field(default_factory=TLSSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        tls_data = data.get("tls", {})
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 33222),
            debug=data.get("debug", False),
            services=list(data.get("services") or SERVICE_NAMES),
            tls=TLSSettings.from_dict(tls_data) if tls_data else TLSSettings(),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "host": self.host,
            "port": self.port,
            "debug": self.debug,
            "services": list(self.services),
            "tls": self.tls.to_dict(),
        }


@dataclass
class IdentityProviderSettings:
    """SAML Identity Provider settings."""

    entity_id: str = "SAMLIdentityProvider"
    audience: str = "Audience"
    assertion_lifetime_seconds: int = 60
    signing_key_path: Path | None = None
    signing_cert_path: Path | None = None
    signing_pkcs12_path: Path | None = None
    signing_pkcs12_password: str | None = None
    # requester (AuthnRequest issuer) -> registered return URL
    trusted_requesters: dict[str, str] = field(
        default_factory=lambda: {DEFAULT_CLIENT_URL: f"{DEFAULT_CLIENT_URL}/Client/AuthnResponse"}
    )
    # local username -> federated subject
    identity_mappings: dict[str, str] = field(
        default_factory=lambda: {"user": "federatedusername"}
    )
    # demo credential store: username -> password
    users: dict[str, str] = field(default_factory=lambda: {"user": "password"})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IdentityProviderSettings:
        """Create IdentityProviderSettings from a dictionary."""
        defaults = cls()
        return cls(
            entity_id=data.get("entity_id", defaults.entity_id),
            audience=data.get("audience", defaults.audience),
            assertion_lifetime_seconds=data.get(
                "assertion_lifetime_seconds", defaults.assertion_lifetime_seconds
            ),
            signing_key_path=_optional_path(data.get("signing_key_path")),
            signing_cert_path=_optional_path(data.get("signing_cert_path")),
            signing_pkcs12_path=_optional_path(data.get("signing_pkcs12_path")),
            signing_pkcs12_password=data.get("signing_pkcs12_password"),
            trusted_requesters=dict(data.get("trusted_requesters") or defaults.trusted_requesters),
            identity_mappings=dict(data.get("identity_mappings") or defaults.identity_mappings),
            users=dict(data.get("users") or defaults.users),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entity_id": self.entity_id,
            "audience": self.audience,
            "assertion_lifetime_seconds": self.assertion_lifetime_seconds,
            "signing_key_path": str(self.signing_key_path) if self.signing_key_path else None,
            "signing_cert_path": str(self.signing_cert_path) if self.signing_cert_path else None,
            "signing_pkcs12_path": (
                str(self.signing_pkcs12_path) if self.signing_pkcs12_path else None
            ),
            "trusted_requesters": dict(self.trusted_requesters),
            "identity_mappings": dict(self.identity_mappings),
            "users": dict(self.users),
        }


@dataclass
class AuthorizationServerSettings:
    """OAuth2 Authorization Server settings."""

    # trusted SAML issuer -> its SSO URL (informational, may be empty)
    trusted_issuers: dict[str, str | None] = field(
        default_factory=lambda: {"SAMLIdentityProvider": f"{DEFAULT_IDP_URL}/SAML/AuthnRequest"}
    )
    federated_subjects: list[str] = field(default_factory=lambda: ["federatedusername"])
    # client_id -> registered redirect URI
    clients: dict[str, str] = field(
        default_factory=lambda: {"federatedusername": f"{DEFAULT_CLIENT_URL}/Client/OAuthRedirect"}
    )
    verification_cert_path: Path | None = None
    decline_redirect_url: str = DEFAULT_CLIENT_URL
    client_auth_ttl_seconds: int | None = 300
    code_max_age_seconds: int | None = None
    clock_skew_seconds: int = 30
    enforce_validity_window: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationServerSettings:
        """Create AuthorizationServerSettings from a dictionary."""
        defaults = cls()
        return cls(
            trusted_issuers=dict(data.get("trusted_issuers") or defaults.trusted_issuers),
            federated_subjects=list(data.get("federated_subjects") or defaults.federated_subjects),
            clients=dict(data.get("clients") or defaults.clients),
            verification_cert_path=_optional_path(data.get("verification_cert_path")),
            decline_redirect_url=data.get("decline_redirect_url", defaults.decline_redirect_url),
            client_auth_ttl_seconds=_optional_int(
                data.get("client_auth_ttl_seconds", defaults.client_auth_ttl_seconds)
            ),
            code_max_age_seconds=_optional_int(data.get("code_max_age_seconds")),
            clock_skew_seconds=data.get("clock_skew_seconds", defaults.clock_skew_seconds),
            enforce_validity_window=data.get(
                "enforce_validity_window", defaults.enforce_validity_window
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "trusted_issuers": dict(self.trusted_issuers),
            "federated_subjects": list(self.federated_subjects),
            "clients": dict(self.clients),
            "verification_cert_path": (
                str(self.verification_cert_path) if self.verification_cert_path else None
            ),
            "decline_redirect_url": self.decline_redirect_url,
            "client_auth_ttl_seconds": self.client_auth_ttl_seconds,
            "code_max_age_seconds": self.code_max_age_seconds,
            "clock_skew_seconds": self.clock_skew_seconds,
            "enforce_validity_window": self.enforce_validity_window,
        }


@dataclass
class ClientSettings:
    """Relying application (Client) settings."""

    base_url: str = DEFAULT_CLIENT_URL
    idp_sso_url: str = f"{DEFAULT_IDP_URL}/SAML/AuthnRequest"
    saml_authorize_url: str = f"{DEFAULT_AUTHZ_URL}/OAuth/SAMLAuthorize"
    token_url: str = f"{DEFAULT_AUTHZ_URL}/OAuth/Token"
    resource_url: str = f"{DEFAULT_RESOURCE_URL}/api/Resource"
    scope: str = "photos documents"
    http_timeout_seconds: float = 10.0
    verify_tls: bool = False
    flow_max_age_seconds: int | None = None

    @property
    def redirect_uri(self) -> str:
        """OAuth redirect URI registered for this client."""
        return f"{self.base_url.rstrip('/')}/Client/OAuthRedirect"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientSettings:
        """Create ClientSettings from a dictionary."""
        defaults = cls()
        return cls(
            base_url=data.get("base_url", defaults.base_url),
            idp_sso_url=data.get("idp_sso_url", defaults.idp_sso_url),
            saml_authorize_url=data.get("saml_authorize_url", defaults.saml_authorize_url),
            token_url=data.get("token_url", defaults.token_url),
            resource_url=data.get("resource_url", defaults.resource_url),
            scope=data.get("scope", defaults.scope),
            http_timeout_seconds=float(
                data.get("http_timeout_seconds", defaults.http_timeout_seconds)
            ),
            verify_tls=data.get("verify_tls", defaults.verify_tls),
            flow_max_age_seconds=_optional_int(data.get("flow_max_age_seconds")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "base_url": self.base_url,
            "idp_sso_url": self.idp_sso_url,
            "saml_authorize_url": self.saml_authorize_url,
            "token_url": self.token_url,
            "resource_url": self.resource_url,
            "scope": self.scope,
            "http_timeout_seconds": self.http_timeout_seconds,
            "verify_tls": self.verify_tls,
            "flow_max_age_seconds": self.flow_max_age_seconds,
        }


@dataclass
class TokenSettings:
    """Bearer token settings shared by the Authorization and Resource servers."""

    secret: str | None = None
    issuer: str = "fedgate"
    access_token_lifetime_seconds: int = 1200

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSettings:
        """Create TokenSettings from a dictionary."""
        return cls(
            secret=data.get("secret"),
            issuer=data.get("issuer", "fedgate"),
            access_token_lifetime_seconds=data.get("access_token_lifetime_seconds", 1200),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "secret": self.secret,
            "issuer": self.issuer,
            "access_token_lifetime_seconds": self.access_token_lifetime_seconds,
        }


@dataclass
class LoggingSettings:
    """Logging settings."""

    level: str = "INFO"
    trace_enabled: bool = False
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        """Create LoggingSettings from a dictionary."""
        return cls(
            level=data.get("level", "INFO"),
            trace_enabled=data.get("trace_enabled", False),
            log_file=data.get("log_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "level": self.level,
            "trace_enabled": self.trace_enabled,
            "log_file": self.log_file,
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    server: ServerSettings = field(default_factory=ServerSettings)
    identity_provider: IdentityProviderSettings = field(default_factory=IdentityProviderSettings)
    authorization_server: AuthorizationServerSettings = field(
        default_factory=AuthorizationServerSettings
    )
    client: ClientSettings = field(default_factory=ClientSettings)
    tokens: TokenSettings = field(default_factory=TokenSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            server=ServerSettings.from_dict(data.get("server") or {}),
            identity_provider=IdentityProviderSettings.from_dict(
                data.get("identity_provider") or {}
            ),
            authorization_server=AuthorizationServerSettings.from_dict(
                data.get("authorization_server") or {}
            ),
            client=ClientSettings.from_dict(data.get("client") or {}),
            tokens=TokenSettings.from_dict(data.get("tokens") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "server": self.server.to_dict(),
            "identity_provider": self.identity_provider.to_dict(),
            "authorization_server": self.authorization_server.to_dict(),
            "client": self.client.to_dict(),
            "tokens": self.tokens.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def validate(self) -> None:
        """Check cross-section consistency.

        Raises:
            ConfigurationError: If the configuration cannot work.
        """
        unknown = set(self.server.services) - set(SERVICE_NAMES)
        if unknown:
            raise ConfigurationError(f"Unknown services: {', '.join(sorted(unknown))}")

        idp = self.identity_provider
        missing = set(idp.users) - set(idp.identity_mappings)
        if missing:
            logger.warning(
                "Users without a federated identity mapping: %s", ", ".join(sorted(missing))
            )

        if self.tokens.access_token_lifetime_seconds <= 0:
            raise ConfigurationError("access_token_lifetime_seconds must be positive")

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.

    Raises:
        ConfigurationError: If the config file exists but cannot be parsed.
    """
    config = AppConfig()

    file_path = config_path or Path(os.environ.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE))
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid config file {file_path}: {e}") from e
        config = AppConfig.from_dict(data, config_path=file_path)

    # Server settings
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]

    if os.environ.get(f"{ENV_PREFIX}PORT"):
        config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)

    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)

    if os.environ.get(f"{ENV_PREFIX}SERVICES"):
        config.server.services = [
            s.strip() for s in os.environ[f"{ENV_PREFIX}SERVICES"].split(",") if s.strip()
        ]

    # TLS settings
    tls = config.server.tls
    tls.enabled = _get_env_bool(f"{ENV_PREFIX}TLS_ENABLED", tls.enabled)

    if os.environ.get(f"{ENV_PREFIX}TLS_CERT"):
        tls.cert_path = Path(os.environ[f"{ENV_PREFIX}TLS_CERT"])

    if os.environ.get(f"{ENV_PREFIX}TLS_KEY"):
        tls.key_path = Path(os.environ[f"{ENV_PREFIX}TLS_KEY"])

    # Keys and tokens
    if os.environ.get(f"{ENV_PREFIX}IDP_SIGNING_KEY"):
        config.identity_provider.signing_key_path = Path(os.environ[f"{ENV_PREFIX}IDP_SIGNING_KEY"])

    if os.environ.get(f"{ENV_PREFIX}IDP_SIGNING_CERT"):
        config.identity_provider.signing_cert_path = Path(
            os.environ[f"{ENV_PREFIX}IDP_SIGNING_CERT"]
        )

    if os.environ.get(f"{ENV_PREFIX}VERIFICATION_CERT"):
        config.authorization_server.verification_cert_path = Path(
            os.environ[f"{ENV_PREFIX}VERIFICATION_CERT"]
        )

    if os.environ.get(f"{ENV_PREFIX}TOKEN_SECRET"):
        config.tokens.secret = os.environ[f"{ENV_PREFIX}TOKEN_SECRET"]

    # Logging
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"]

    config.logging.trace_enabled = _get_env_bool(
        f"{ENV_PREFIX}LOG_TRACE", config.logging.trace_enabled
    )

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return f"""\
# fedgate configuration file
# Environment variables override these settings (prefix: {ENV_PREFIX})

server:
  host: "127.0.0.1"
  port: 33222
  debug: false
  # Services hosted by this process: idp, authz, client, resource
  services: [idp, authz, client, resource]
  tls:
    enabled: false
    # cert_path: ~/.fedgate/certs/server.crt
    # key_path: ~/.fedgate/certs/server.key

identity_provider:
  entity_id: SAMLIdentityProvider
  audience: Audience
  assertion_lifetime_seconds: 60
  # Generated on first run when not set
  # signing_key_path: ~/.fedgate/certs/signing.key
  # signing_cert_path: ~/.fedgate/certs/signing.crt
  # signing_pkcs12_path: ~/.fedgate/certs/signing.pfx
  trusted_requesters:
    "{DEFAULT_CLIENT_URL}": "{DEFAULT_CLIENT_URL}/Client/AuthnResponse"
  identity_mappings:
    user: federatedusername
  users:
    user: password

authorization_server:
  trusted_issuers:
    SAMLIdentityProvider: "{DEFAULT_IDP_URL}/SAML/AuthnRequest"
  federated_subjects: [federatedusername]
  clients:
    federatedusername: "{DEFAULT_CLIENT_URL}/Client/OAuthRedirect"
  # verification_cert_path: ~/.fedgate/certs/signing.crt
  decline_redirect_url: "{DEFAULT_CLIENT_URL}"
  client_auth_ttl_seconds: 300
  # Unset: codes are kept until redeemed
  # code_max_age_seconds: 300
  clock_skew_seconds: 30
  enforce_validity_window: true

client:
  base_url: "{DEFAULT_CLIENT_URL}"
  idp_sso_url: "{DEFAULT_IDP_URL}/SAML/AuthnRequest"
  saml_authorize_url: "{DEFAULT_AUTHZ_URL}/OAuth/SAMLAuthorize"
  token_url: "{DEFAULT_AUTHZ_URL}/OAuth/Token"
  resource_url: "{DEFAULT_RESOURCE_URL}/api/Resource"
  scope: "photos documents"
  http_timeout_seconds: 10

tokens:
  # Shared by the authorization and resource servers
  # secret: change-me
  issuer: fedgate
  access_token_lifetime_seconds: 1200

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: INFO
  trace_enabled: false
"""
