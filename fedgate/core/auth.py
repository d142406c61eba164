"""Password verification for the Identity Provider's login form."""

from __future__ import annotations

import hashlib
import hmac
import os
from collections.abc import Mapping
from dataclasses import dataclass

# OWASP 2023 recommendation for PBKDF2-HMAC-SHA256
DEFAULT_ITERATIONS = 600_000


def hash_password(
    password: str, salt: bytes | None = None, iterations: int = DEFAULT_ITERATIONS
) -> tuple[str, str]:
    """Hash a password using PBKDF2-HMAC-SHA256.

    Args:
        password: The plaintext password to hash.
        salt: Optional salt bytes. If not provided, generates a random 32-byte salt.
        iterations: PBKDF2 iteration count.

    Returns:
        Tuple of (password_hash, salt) as hex strings.
    """
    if salt is None:
        salt = os.urandom(32)

    password_hash = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        iterations=iterations,
        dklen=32,
    )

    return password_hash.hex(), salt.hex()


def verify_password(
    password: str, stored_hash: str, salt: str, iterations: int = DEFAULT_ITERATIONS
) -> bool:
    """Verify a password against a stored hash.

    Returns:
        True if the password matches, False otherwise.
    """
    computed_hash, _ = hash_password(password, bytes.fromhex(salt), iterations)
    return hmac.compare_digest(computed_hash, stored_hash)


@dataclass(frozen=True)
class StoredCredential:
    password_hash: str
    salt: str


class CredentialStore:
    """In-memory username/password store.

    Passwords are hashed when the store is built; plaintext is never kept.
    """

    def __init__(self, iterations: int = DEFAULT_ITERATIONS) -> None:
        self._iterations = iterations
        self._credentials: dict[str, StoredCredential] = {}
        # Hashed once so unknown usernames cost the same as wrong passwords
        self._dummy = StoredCredential(*hash_password("", iterations=iterations))

    @classmethod
    def from_plaintext(
        cls, users: Mapping[str, str], iterations: int = DEFAULT_ITERATIONS
    ) -> CredentialStore:
        store = cls(iterations=iterations)
        for username, password in users.items():
            store.add_user(username, password)
        return store

    def add_user(self, username: str, password: str) -> None:
        password_hash, salt = hash_password(password, iterations=self._iterations)
        self._credentials[username] = StoredCredential(password_hash, salt)

    def verify(self, username: str | None, password: str | None) -> bool:
        """Check a username/password pair."""
        stored = self._credentials.get(username or "")
        candidate = stored or self._dummy
        matches = verify_password(
            password or "", candidate.password_hash, candidate.salt, self._iterations
        )
        return stored is not None and matches

    def __contains__(self, username: object) -> bool:
        return username in self._credentials

    def __len__(self) -> int:
        return len(self._credentials)
