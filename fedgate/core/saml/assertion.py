"""Signed SAML assertion issuance (Identity Provider side).

The IdP authenticates a local user, maps them to their federated
identity and returns a ``samlp:Response`` carrying one assertion about
that identity. The signature covers the whole Response.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from lxml import etree

from fedgate.core.errors import InvalidCredentials
from fedgate.core.saml.signature import SignatureEngine
from fedgate.core.saml.utils import (
    BEARER_CONFIRMATION,
    NAMEID_UNSPECIFIED,
    PASSWORD_PROTECTED_TRANSPORT,
    SAML_NS,
    STATUS_SUCCESS,
    assertion_fingerprint,
    encode_base64_xml,
    format_instant,
    new_id,
    qname,
    to_xml_string,
)
from fedgate.core.trust import FederatedIdentityMap, TrustRegistry

logger = logging.getLogger(__name__)

DEFAULT_ASSERTION_LIFETIME = timedelta(seconds=60)


@dataclass(frozen=True)
class SignedAssertion:
    """A signed SAML Response ready to be posted to its destination."""

    xml: str
    encoded: str
    subject: str
    response_id: str
    assertion_id: str
    destination: str | None
    not_on_or_after: datetime

    @property
    def fingerprint(self) -> str:
        return assertion_fingerprint(self.encoded)


class AssertionService:
    """Builds signed assertions for authenticated local subjects.

    Stateless apart from its read-only collaborators.
    """

    def __init__(
        self,
        issuer: str,
        identities: FederatedIdentityMap,
        requesters: TrustRegistry,
        private_key: rsa.RSAPrivateKey,
        certificate: x509.Certificate,
        *,
        audience: str = "Audience",
        lifetime: timedelta = DEFAULT_ASSERTION_LIFETIME,
        engine: SignatureEngine | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.issuer = issuer
        self.identities = identities
        self.requesters = requesters
        self.audience = audience
        self.lifetime = lifetime
        self._private_key = private_key
        self._certificate = certificate
        self._engine = engine or SignatureEngine()
        self._clock = clock or (lambda: datetime.now(UTC))

    def issue_assertion(
        self,
        local_subject: str,
        credentials_valid: bool,
        audience: str | None = None,
        requester: str | None = None,
        *,
        in_response_to: str | None = None,
        attributes: Mapping[str, Sequence[str]] | None = None,
    ) -> SignedAssertion:
        """Issue a signed assertion for ``local_subject``.

        Args:
            local_subject: Username authenticated by the IdP.
            credentials_valid: Outcome of the credential check.
            audience: AudienceRestriction value; the service default if omitted.
            requester: AuthnRequest issuer; its registered return URL becomes
                the Response destination.
            in_response_to: ID of the AuthnRequest being answered.
            attributes: Optional extra attributes for the AttributeStatement.

        Raises:
            InvalidCredentials: If ``credentials_valid`` is false.
            UnknownSubject: If the subject has no federated identity.
            UntrustedIssuer: If ``requester`` is not a trusted requester.
        """
        if not credentials_valid:
            raise InvalidCredentials(f"Invalid credentials for {local_subject!r}")

        federated = self.identities.federated_subject(local_subject)
        destination = self.requesters.lookup(requester) if requester is not None else None

        now = self._clock()
        not_on_or_after = now + self.lifetime
        response = self._build_response(
            federated,
            audience or self.audience,
            destination,
            in_response_to,
            now,
            not_on_or_after,
            attributes or {},
        )
        signed = self._engine.sign(response, self._private_key, self._certificate)

        xml = to_xml_string(signed)
        assertion_id = signed.find("saml:Assertion", SAML_NS).get("ID")
        logger.info(
            "Issued assertion %s for %s (local %s) to %s",
            assertion_id,
            federated,
            local_subject,
            destination or "<unsolicited>",
        )
        return SignedAssertion(
            xml=xml,
            encoded=encode_base64_xml(xml),
            subject=federated,
            response_id=signed.get("ID"),
            assertion_id=assertion_id,
            destination=destination,
            not_on_or_after=not_on_or_after,
        )

    def _build_response(
        self,
        subject: str,
        audience: str,
        destination: str | None,
        in_response_to: str | None,
        now: datetime,
        not_on_or_after: datetime,
        attributes: Mapping[str, Sequence[str]],
    ) -> etree._Element:
        instant = format_instant(now)
        expiry = format_instant(not_on_or_after)

        response = etree.Element(
            qname("samlp", "Response"),
            nsmap={"samlp": SAML_NS["samlp"], "saml": SAML_NS["saml"]},
        )
        response.set("ID", new_id())
        response.set("Version", "2.0")
        response.set("IssueInstant", instant)
        if destination:
            response.set("Destination", destination)
        if in_response_to:
            response.set("InResponseTo", in_response_to)

        etree.SubElement(response, qname("saml", "Issuer")).text = self.issuer
        status = etree.SubElement(response, qname("samlp", "Status"))
        etree.SubElement(status, qname("samlp", "StatusCode")).set("Value", STATUS_SUCCESS)

        assertion = etree.SubElement(response, qname("saml", "Assertion"))
        assertion.set("ID", new_id())
        assertion.set("Version", "2.0")
        assertion.set("IssueInstant", instant)
        etree.SubElement(assertion, qname("saml", "Issuer")).text = self.issuer

        subject_el = etree.SubElement(assertion, qname("saml", "Subject"))
        name_id = etree.SubElement(subject_el, qname("saml", "NameID"))
        name_id.set("Format", NAMEID_UNSPECIFIED)
        name_id.text = subject
        confirmation = etree.SubElement(subject_el, qname("saml", "SubjectConfirmation"))
        confirmation.set("Method", BEARER_CONFIRMATION)
        confirmation_data = etree.SubElement(
            confirmation, qname("saml", "SubjectConfirmationData")
        )
        confirmation_data.set("NotOnOrAfter", expiry)
        if destination:
            confirmation_data.set("Recipient", destination)
        if in_response_to:
            confirmation_data.set("InResponseTo", in_response_to)

        conditions = etree.SubElement(assertion, qname("saml", "Conditions"))
        conditions.set("NotBefore", instant)
        conditions.set("NotOnOrAfter", expiry)
        restriction = etree.SubElement(conditions, qname("saml", "AudienceRestriction"))
        etree.SubElement(restriction, qname("saml", "Audience")).text = audience

        authn = etree.SubElement(assertion, qname("saml", "AuthnStatement"))
        authn.set("AuthnInstant", instant)
        authn.set("SessionIndex", assertion.get("ID"))
        context = etree.SubElement(authn, qname("saml", "AuthnContext"))
        etree.SubElement(
            context, qname("saml", "AuthnContextClassRef")
        ).text = PASSWORD_PROTECTED_TRANSPORT

        if attributes:
            statement = etree.SubElement(assertion, qname("saml", "AttributeStatement"))
            for name, values in attributes.items():
                attribute = etree.SubElement(statement, qname("saml", "Attribute"))
                attribute.set("Name", name)
                for value in values:
                    etree.SubElement(attribute, qname("saml", "AttributeValue")).text = value

        return response
