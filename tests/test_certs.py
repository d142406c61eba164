"""Tests for key and certificate management."""

from datetime import UTC, datetime
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12

from fedgate.core.crypto.certs import (
    CertificateLoadError,
    KeyLoadError,
    ensure_signing_credentials,
    ensure_tls_certificate,
    generate_private_key,
    generate_self_signed_certificate,
    get_certificate_info,
    is_certificate_valid,
    load_certificate,
    load_private_key,
    load_signing_credentials,
    save_certificate,
    save_private_key,
)


def test_self_signed_certificate() -> None:
    key = generate_private_key()
    cert = generate_self_signed_certificate(key, common_name="test-idp", days_valid=30)

    info = get_certificate_info(cert)
    assert "CN=test-idp" in info.subject
    assert info.subject == info.issuer
    assert info.key_size == 2048
    assert is_certificate_valid(cert)
    assert (info.not_after - datetime.now(UTC)).days <= 30


def test_save_and_load(tmp_path: Path) -> None:
    key = generate_private_key()
    cert = generate_self_signed_certificate(key)
    save_private_key(key, tmp_path / "keys" / "signing.key")
    save_certificate(cert, tmp_path / "keys" / "signing.crt")

    assert (tmp_path / "keys" / "signing.key").stat().st_mode & 0o777 == 0o600
    assert load_certificate(tmp_path / "keys" / "signing.crt") == cert
    loaded = load_private_key(tmp_path / "keys" / "signing.key")
    assert loaded.public_key().public_numbers() == key.public_key().public_numbers()


def test_load_missing(tmp_path: Path) -> None:
    with pytest.raises(CertificateLoadError):
        load_certificate(tmp_path / "missing.crt")
    with pytest.raises(KeyLoadError):
        load_private_key(tmp_path / "missing.key")


def test_load_garbage(tmp_path: Path) -> None:
    path = tmp_path / "garbage.crt"
    path.write_text("not a certificate")
    with pytest.raises(CertificateLoadError):
        load_certificate(path)


def test_ensure_signing_credentials_generates_once(tmp_path: Path) -> None:
    first = ensure_signing_credentials(tmp_path / "signing.key", tmp_path / "signing.crt")
    second = ensure_signing_credentials(tmp_path / "signing.key", tmp_path / "signing.crt")

    assert first.auto_generated
    assert not second.auto_generated
    assert second.certificate == first.certificate


def test_ensure_signing_credentials_replaces_unreadable(tmp_path: Path) -> None:
    (tmp_path / "signing.key").write_text("broken")
    (tmp_path / "signing.crt").write_text("broken")

    credentials = ensure_signing_credentials(tmp_path / "signing.key", tmp_path / "signing.crt")

    assert credentials.auto_generated
    assert load_certificate(tmp_path / "signing.crt") == credentials.certificate


def test_load_pkcs12(tmp_path: Path) -> None:
    key = generate_private_key()
    cert = generate_self_signed_certificate(key)
    path = tmp_path / "signing.p12"
    path.write_bytes(
        pkcs12.serialize_key_and_certificates(
            b"idp", key, cert, None, BestAvailableEncryption(b"secret")
        )
    )

    credentials = load_signing_credentials(pkcs12_path=path, pkcs12_password="secret")
    assert credentials.certificate == cert

    with pytest.raises(CertificateLoadError):
        load_signing_credentials(pkcs12_path=path, pkcs12_password="wrong")


def test_ensure_tls_certificate(tmp_path: Path) -> None:
    tls = ensure_tls_certificate(tmp_path / "server.crt", tmp_path / "server.key")
    assert tls.auto_generated

    cert = load_certificate(tls.cert_path)
    names = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert "localhost" in names.get_values_for_type(x509.DNSName)

    again = ensure_tls_certificate(tmp_path / "server.crt", tmp_path / "server.key")
    assert not again.auto_generated

    forced = ensure_tls_certificate(
        tmp_path / "server.crt", tmp_path / "server.key", regenerate=True
    )
    assert forced.auto_generated
    assert load_certificate(forced.cert_path) != cert
