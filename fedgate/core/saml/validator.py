"""SAML response validation (Authorization Server side).

Checks run in a fixed order so the cheapest structural failures are
reported first and the signature is only verified for responses that
could be accepted:

1. Parse (base64 and XML)
2. Issuer trust
3. Status code
4. Subject present
5. Subject is a known federated identity
6. Signature over the whole Response, against the pinned certificate
7. Conditions validity window

Comments are stripped at parse time and the accepted values are read
from the canonicalized copy that signxml verified, so text hidden from
the digest cannot change the subject.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from cryptography import x509
from lxml import etree

from fedgate.core.errors import (
    AssertionDenied,
    AssertionExpired,
    InvalidSignature,
    MalformedAssertion,
    MissingSubject,
    UnknownFederatedSubject,
    UntrustedIssuer,
)
from fedgate.core.saml.signature import SignatureEngine
from fedgate.core.saml.utils import (
    SAML_NS,
    STATUS_SUCCESS,
    decode_base64_xml,
    looks_like_xml,
    parse_instant,
    parse_xml,
    qname,
)
from fedgate.core.trust import FederatedIdentityMap, TrustRegistry

logger = logging.getLogger(__name__)


@dataclass
class ValidatedAssertion:
    """What the Authorization Server learns from an accepted response."""

    subject: str
    issuer: str
    assertion_id: str | None
    response_id: str | None
    audience: str | None = None
    not_on_or_after: datetime | None = None
    attributes: dict[str, list[str]] = field(default_factory=dict)


class AssertionValidator:
    """Parses and verifies SAML responses posted by the Client."""

    def __init__(
        self,
        trusted_issuers: TrustRegistry,
        identities: FederatedIdentityMap,
        certificate: x509.Certificate,
        *,
        engine: SignatureEngine | None = None,
        clock_skew: timedelta = timedelta(seconds=30),
        enforce_validity_window: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.trusted_issuers = trusted_issuers
        self.identities = identities
        self.clock_skew = clock_skew
        self.enforce_validity_window = enforce_validity_window
        self._certificate = certificate
        self._engine = engine or SignatureEngine()
        self._clock = clock or (lambda: datetime.now(UTC))

    def validate(self, saml_response: str | bytes) -> ValidatedAssertion:
        """Validate a SAML response given as base64 or raw XML.

        Raises:
            MalformedAssertion: Undecodable payload, no assertion, or a
                NameID with child nodes.
            UntrustedIssuer: Issuer not in the trust registry.
            AssertionDenied: Non-success status.
            MissingSubject: No NameID.
            UnknownFederatedSubject: NameID is not a known federated identity.
            InvalidSignature: Signature missing, invalid or not over the Response.
            AssertionExpired: Outside the Conditions window.
        """
        root = self._parse(saml_response)

        if root.tag != qname("samlp", "Response"):
            raise MalformedAssertion(
                f"Expected samlp:Response, got {etree.QName(root).localname}"
            )
        assertion = root.find("saml:Assertion", SAML_NS)
        if assertion is None:
            raise MalformedAssertion("Response contains no assertion")

        issuer = _text(root, "saml:Issuer") or _text(assertion, "saml:Issuer")
        if not self.trusted_issuers.is_trusted(issuer):
            logger.warning("Rejected response from untrusted issuer %r", issuer)
            raise UntrustedIssuer(f"Issuer {issuer!r} is not trusted")

        status_el = root.find("samlp:Status/samlp:StatusCode", SAML_NS)
        status = status_el.get("Value") if status_el is not None else None
        if status != STATUS_SUCCESS:
            raise AssertionDenied(f"SAML status is {status!r}")

        subject = _name_id(assertion)
        if not self.identities.is_known(subject):
            raise UnknownFederatedSubject(f"Subject {subject!r} is not a federated identity")

        verified = self._engine.verify(root, self._certificate)

        # Everything returned is read from the signed copy
        root = verified.element
        assertion = root.find("saml:Assertion", SAML_NS)
        if assertion is None or _name_id(assertion) != subject:
            raise InvalidSignature("Signed content does not match the presented subject")
        issuer = _text(root, "saml:Issuer") or _text(assertion, "saml:Issuer")

        conditions = assertion.find("saml:Conditions", SAML_NS)
        not_before = not_on_or_after = None
        if conditions is not None:
            not_before = parse_instant(conditions.get("NotBefore"))
            not_on_or_after = parse_instant(conditions.get("NotOnOrAfter"))
        if self.enforce_validity_window:
            self._check_window(not_before, not_on_or_after)

        validated = ValidatedAssertion(
            subject=subject,
            issuer=issuer,
            assertion_id=assertion.get("ID"),
            response_id=root.get("ID"),
            audience=_text(assertion, "saml:Conditions/saml:AudienceRestriction/saml:Audience"),
            not_on_or_after=not_on_or_after,
            attributes=_attributes(assertion),
        )
        logger.info(
            "Accepted assertion %s for %s from %s", validated.assertion_id, subject, issuer
        )
        return validated

    def validate_subject(self, saml_response: str | bytes) -> str:
        """Validate and return only the federated subject."""
        return self.validate(saml_response).subject

    def _parse(self, saml_response: str | bytes) -> etree._Element:
        if isinstance(saml_response, bytes):
            try:
                saml_response = saml_response.decode("utf-8")
            except UnicodeDecodeError as e:
                raise MalformedAssertion(f"Response is not UTF-8: {e}") from e
        if not saml_response or not saml_response.strip():
            raise MalformedAssertion("Empty SAML response")
        if looks_like_xml(saml_response):
            return parse_xml(saml_response)
        return parse_xml(decode_base64_xml(saml_response))

    def _check_window(self, not_before: datetime | None, not_on_or_after: datetime | None) -> None:
        now = self._clock()
        if not_before is not None and now + self.clock_skew < not_before:
            raise AssertionExpired(f"Assertion not valid before {not_before.isoformat()}")
        if not_on_or_after is not None and now - self.clock_skew >= not_on_or_after:
            raise AssertionExpired(f"Assertion expired at {not_on_or_after.isoformat()}")


def _name_id(assertion: etree._Element) -> str:
    name_id = assertion.find("saml:Subject/saml:NameID", SAML_NS)
    if name_id is None or not (name_id.text or "").strip():
        raise MissingSubject("Assertion has no subject NameID")
    if len(name_id):
        raise MalformedAssertion("Subject NameID must contain only text")
    return name_id.text.strip()


def _text(element: etree._Element, path: str) -> str | None:
    value = element.findtext(path, namespaces=SAML_NS)
    if value is None:
        return None
    return value.strip() or None


def _attributes(assertion: etree._Element) -> dict[str, list[str]]:
    attributes: dict[str, list[str]] = {}
    for attr in assertion.findall("saml:AttributeStatement/saml:Attribute", SAML_NS):
        name = attr.get("Name")
        if not name:
            continue
        attributes[name] = [
            (v.text or "").strip() for v in attr.findall("saml:AttributeValue", SAML_NS)
        ]
    return attributes
