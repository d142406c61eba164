"""Key, certificate and ticket protection utilities."""

from fedgate.core.crypto.certs import (
    DEFAULT_CERT_DIR,
    CertificateError,
    CertificateInfo,
    CertificateLoadError,
    KeyLoadError,
    SigningCredentials,
    TLSConfig,
    ensure_signing_credentials,
    ensure_tls_certificate,
    generate_private_key,
    generate_self_signed_certificate,
    generate_signing_credentials,
    generate_tls_certificate,
    get_certificate_info,
    is_certificate_valid,
    load_certificate,
    load_pkcs12,
    load_private_key,
    load_signing_credentials,
    save_certificate,
    save_private_key,
)

__all__ = [
    "DEFAULT_CERT_DIR",
    "CertificateError",
    "CertificateInfo",
    "CertificateLoadError",
    "KeyLoadError",
    "SigningCredentials",
    "TLSConfig",
    "ensure_signing_credentials",
    "ensure_tls_certificate",
    "generate_private_key",
    "generate_self_signed_certificate",
    "generate_signing_credentials",
    "generate_tls_certificate",
    "get_certificate_info",
    "is_certificate_valid",
    "load_certificate",
    "load_pkcs12",
    "load_private_key",
    "load_signing_credentials",
    "save_certificate",
    "save_private_key",
]
