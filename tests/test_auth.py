"""Tests for the IdP credential store."""

from fedgate.core.auth import CredentialStore, hash_password, verify_password


def test_hash_and_verify_password() -> None:
    password_hash, salt = hash_password("secret", iterations=1_000)
    assert verify_password("secret", password_hash, salt, iterations=1_000)
    assert not verify_password("Secret", password_hash, salt, iterations=1_000)


def test_same_password_different_salt() -> None:
    first, _ = hash_password("secret", iterations=1_000)
    second, _ = hash_password("secret", iterations=1_000)
    assert first != second


def test_credential_store_verify(credential_store: CredentialStore) -> None:
    assert credential_store.verify("user", "password")
    assert not credential_store.verify("user", "wrong")
    assert not credential_store.verify("nobody", "password")
    assert not credential_store.verify(None, None)


def test_credential_store_membership(credential_store: CredentialStore) -> None:
    assert "user" in credential_store
    assert "nobody" not in credential_store
    assert len(credential_store) == 1
