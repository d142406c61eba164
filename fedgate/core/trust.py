"""Static trust and identity registries.

Both registries are built once from configuration and are read-only
afterwards, so request handlers can share them without locking.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from fedgate.core.errors import UnknownSubject, UntrustedIssuer


@dataclass(frozen=True)
class TrustedParty:
    """An issuer or client id together with the URL it is allowed to use."""

    key: str
    redirect_uri: str | None


class TrustRegistry(Mapping[str, str | None]):
    """Issuer-or-client-id -> expected return URL.

    The same type backs three registries: SAML requesters trusted by the
    Identity Provider, SAML issuers trusted by the Authorization Server and
    OAuth clients with their registered redirect URIs.
    """

    def __init__(
        self,
        entries: Mapping[str, str | None] | Iterable[TrustedParty] = (),
        *,
        name: str = "trust registry",
    ) -> None:
        if isinstance(entries, Mapping):
            parties = {k: TrustedParty(k, v) for k, v in entries.items()}
        else:
            parties = {p.key: p for p in entries}
        self._parties = MappingProxyType(parties)
        self.name = name

    def __getitem__(self, key: str) -> str | None:
        return self._parties[key].redirect_uri

    def __iter__(self) -> Iterator[str]:
        return iter(self._parties)

    def __len__(self) -> int:
        return len(self._parties)

    def __repr__(self) -> str:
        return f"TrustRegistry({self.name!r}, {sorted(self._parties)!r})"

    def lookup(self, key: str) -> str | None:
        """Return the registered URL for ``key``.

        Raises:
            UntrustedIssuer: If ``key`` is not registered.
        """
        try:
            return self[key]
        except KeyError:
            raise UntrustedIssuer(f"{key!r} is not in the {self.name}") from None

    def is_trusted(self, key: str | None) -> bool:
        return key is not None and key in self._parties

    def party(self, key: str) -> TrustedParty:
        """Return the full entry for ``key``; raises like ``lookup``."""
        self.lookup(key)
        return self._parties[key]


class FederatedIdentityMap:
    """Local principal -> federation-wide subject, plus the known subjects.

    The Identity Provider uses the mapping; the Authorization Server only
    needs the set of subjects it is willing to accept.
    """

    def __init__(
        self,
        mappings: Mapping[str, str] | None = None,
        known_subjects: Iterable[str] | None = None,
    ) -> None:
        self._mappings = MappingProxyType(dict(mappings or {}))
        subjects = set(known_subjects) if known_subjects is not None else set()
        subjects.update(self._mappings.values())
        self._known = frozenset(subjects)

    def federated_subject(self, local_subject: str) -> str:
        """Map a local subject to its federated identity.

        Raises:
            UnknownSubject: If the local subject has no mapping.
        """
        try:
            return self._mappings[local_subject]
        except KeyError:
            raise UnknownSubject(f"No federated identity for {local_subject!r}") from None

    def is_known(self, subject: str) -> bool:
        return subject in self._known

    @property
    def mappings(self) -> Mapping[str, str]:
        return self._mappings

    @property
    def known_subjects(self) -> frozenset[str]:
        return self._known
