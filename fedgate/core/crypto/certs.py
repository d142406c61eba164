"""Signing key and certificate management.

The Identity Provider signs assertions with an RSA key whose self-signed
X.509 certificate is pinned by the Authorization Server. This module
generates such credentials on first run and loads them from PEM or
PKCS#12 files.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import stat
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger(__name__)

DEFAULT_CERT_DIR = Path.home() / ".fedgate" / "certs"

ENV_CERT_DIR = "FEDGATE_CERT_DIR"


class CertificateError(Exception):
    """Base exception for certificate-related errors."""


class CertificateLoadError(CertificateError):
    """Raised when a certificate cannot be loaded."""


class KeyLoadError(CertificateError):
    """Raised when a private key cannot be loaded."""


@dataclass
class CertificateInfo:
    """Information extracted from an X.509 certificate."""

    subject: str
    issuer: str
    serial_number: str
    not_before: datetime
    not_after: datetime
    fingerprint_sha256: str
    key_size: int


@dataclass
class SigningCredentials:
    """A private key and the certificate that pins its public half."""

    private_key: rsa.RSAPrivateKey
    certificate: x509.Certificate
    auto_generated: bool = False


def get_cert_dir() -> Path:
    """Get the certificate directory from environment or default."""
    env_dir = os.environ.get(ENV_CERT_DIR)
    if env_dir:
        return Path(env_dir)
    return DEFAULT_CERT_DIR


def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def generate_self_signed_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str = "SAMLIdentityProvider",
    organization: str = "fedgate",
    days_valid: int = 365,
) -> x509.Certificate:
    """Generate a self-signed X.509 certificate for XML signatures.

    Args:
        private_key: RSA private key to sign the certificate.
        common_name: Common Name (CN) for the certificate subject.
        organization: Organization (O) for the certificate subject.
        days_valid: Number of days the certificate is valid.

    Returns:
        Self-signed X.509 certificate.
    """
    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])

    now = datetime.now(UTC)

    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=True,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .sign(private_key, hashes.SHA256())
    )


def save_private_key(private_key: rsa.RSAPrivateKey, path: Path) -> None:
    """Save a private key to a PEM file readable only by the owner."""
    path.parent.mkdir(parents=True, exist_ok=True)

    pem_data = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )

    path.touch(mode=0o600)
    path.write_bytes(pem_data)
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)


def save_certificate(cert: x509.Certificate, path: Path) -> None:
    """Save a certificate to a PEM file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def load_private_key(path: Path, password: bytes | None = None) -> rsa.RSAPrivateKey:
    """Load an RSA private key from a PEM file.

    Raises:
        KeyLoadError: If the key cannot be loaded.
    """
    if not path.exists():
        raise KeyLoadError(f"Private key file not found: {path}")

    try:
        key = serialization.load_pem_private_key(path.read_bytes(), password=password)
    except (ValueError, TypeError) as e:
        raise KeyLoadError(f"Failed to load private key from {path}: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyLoadError(f"Expected RSA private key, got {type(key).__name__}")
    return key


def load_certificate(path: Path) -> x509.Certificate:
    """Load a certificate from a PEM file.

    Raises:
        CertificateLoadError: If the certificate cannot be loaded.
    """
    if not path.exists():
        raise CertificateLoadError(f"Certificate file not found: {path}")

    try:
        return x509.load_pem_x509_certificate(path.read_bytes())
    except ValueError as e:
        raise CertificateLoadError(f"Failed to load certificate from {path}: {e}") from e


def load_pkcs12(path: Path, password: bytes | None = None) -> SigningCredentials:
    """Load signing credentials from a PKCS#12 (.pfx/.p12) file.

    Raises:
        CertificateLoadError: If the file cannot be loaded or lacks a key/cert.
    """
    if not path.exists():
        raise CertificateLoadError(f"PKCS#12 file not found: {path}")

    try:
        private_key, cert, _chain = pkcs12.load_key_and_certificates(path.read_bytes(), password)
    except ValueError as e:
        raise CertificateLoadError(f"Failed to load PKCS#12 from {path}: {e}") from e

    if private_key is None:
        raise CertificateLoadError("PKCS#12 file does not contain a private key")
    if cert is None:
        raise CertificateLoadError("PKCS#12 file does not contain a certificate")
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise CertificateLoadError(f"Expected RSA private key, got {type(private_key).__name__}")

    return SigningCredentials(private_key=private_key, certificate=cert)


def get_certificate_info(cert: x509.Certificate) -> CertificateInfo:
    """Extract display information from an X.509 certificate."""
    public_key = cert.public_key()
    key_size = public_key.key_size if isinstance(public_key, rsa.RSAPublicKey) else 0

    return CertificateInfo(
        subject=cert.subject.rfc4514_string(),
        issuer=cert.issuer.rfc4514_string(),
        serial_number=format(cert.serial_number, "x"),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        fingerprint_sha256=cert.fingerprint(hashes.SHA256()).hex(),
        key_size=key_size,
    )


def is_certificate_valid(cert: x509.Certificate) -> bool:
    """Check if a certificate is currently within its validity period."""
    now = datetime.now(UTC)
    return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc


def generate_signing_credentials(
    common_name: str = "SAMLIdentityProvider",
    days_valid: int = 365,
) -> SigningCredentials:
    """Generate an in-memory key pair and self-signed certificate."""
    private_key = generate_private_key()
    cert = generate_self_signed_certificate(
        private_key, common_name=common_name, days_valid=days_valid
    )
    return SigningCredentials(private_key=private_key, certificate=cert, auto_generated=True)


def load_signing_credentials(
    key_path: Path | None = None,
    cert_path: Path | None = None,
    pkcs12_path: Path | None = None,
    pkcs12_password: str | None = None,
) -> SigningCredentials:
    """Load signing credentials from PKCS#12 or a PEM key/cert pair.

    Raises:
        CertificateError: If the files are missing or unreadable.
    """
    if pkcs12_path is not None:
        password = pkcs12_password.encode("utf-8") if pkcs12_password else None
        return load_pkcs12(pkcs12_path, password)

    key_path = key_path or get_cert_dir() / "signing.key"
    cert_path = cert_path or get_cert_dir() / "signing.crt"
    return SigningCredentials(
        private_key=load_private_key(key_path),
        certificate=load_certificate(cert_path),
    )


def ensure_signing_credentials(
    key_path: Path | None = None,
    cert_path: Path | None = None,
    common_name: str = "SAMLIdentityProvider",
    days_valid: int = 365,
) -> SigningCredentials:
    """Load signing credentials, generating them on first run.

    An expired or unreadable certificate is replaced.
    """
    key_path = key_path or get_cert_dir() / "signing.key"
    cert_path = cert_path or get_cert_dir() / "signing.crt"

    if key_path.exists() and cert_path.exists():
        try:
            credentials = load_signing_credentials(key_path, cert_path)
        except CertificateError as e:
            logger.warning("Regenerating unreadable signing credentials: %s", e)
        else:
            if is_certificate_valid(credentials.certificate):
                return credentials
            logger.warning("Signing certificate %s has expired, regenerating", cert_path)

    credentials = generate_signing_credentials(common_name=common_name, days_valid=days_valid)
    save_private_key(credentials.private_key, key_path)
    save_certificate(credentials.certificate, cert_path)
    logger.info("Generated signing credentials at %s", cert_path)
    return credentials


@dataclass
class TLSConfig:
    """TLS configuration for the server."""

    cert_path: Path
    key_path: Path
    auto_generated: bool = False


def generate_tls_certificate(
    private_key: rsa.RSAPrivateKey,
    common_name: str = "localhost",
    days_valid: int = 365,
) -> x509.Certificate:
    """Generate a self-signed server certificate valid for localhost."""
    name = x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "fedgate"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])
    now = datetime.now(UTC)
    san = [x509.DNSName(common_name)]
    if common_name != "localhost":
        san.append(x509.DNSName("localhost"))
    san.append(x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")))

    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=days_valid))
        .add_extension(x509.SubjectAlternativeName(san), critical=False)
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .sign(private_key, hashes.SHA256())
    )


def ensure_tls_certificate(
    cert_path: Path | None = None,
    key_path: Path | None = None,
    common_name: str = "localhost",
    days_valid: int = 365,
    regenerate: bool = False,
) -> TLSConfig:
    """Ensure a TLS certificate exists, generating one if needed.

    Args:
        cert_path: Path to certificate file. Uses default if not specified.
        key_path: Path to key file. Uses default if not specified.
        common_name: Common name for generated certificate.
        days_valid: Days the generated certificate is valid.
        regenerate: Force regeneration even if certificate exists.

    Returns:
        TLSConfig with paths and auto_generated flag.
    """
    cert_path = cert_path or get_cert_dir() / "server.crt"
    key_path = key_path or get_cert_dir() / "server.key"

    if not regenerate and cert_path.exists() and key_path.exists():
        try:
            if is_certificate_valid(load_certificate(cert_path)):
                return TLSConfig(cert_path=cert_path, key_path=key_path)
        except CertificateLoadError as e:
            logger.warning("Regenerating unreadable TLS certificate: %s", e)

    private_key = generate_private_key()
    cert = generate_tls_certificate(private_key, common_name=common_name, days_valid=days_valid)
    save_private_key(private_key, key_path)
    save_certificate(cert, cert_path)
    return TLSConfig(cert_path=cert_path, key_path=key_path, auto_generated=True)
