"""SAML AuthnRequest construction and parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from urllib.parse import urlencode

from lxml import etree

from fedgate.core.errors import MalformedAssertion, MalformedRequest
from fedgate.core.saml.utils import (
    HTTP_POST_BINDING,
    NAMEID_UNSPECIFIED,
    SAML_NS,
    decode_base64_xml,
    encode_base64_xml,
    format_instant,
    new_id,
    parse_xml,
    qname,
    to_xml_string,
)


@dataclass
class AuthnRequest:
    """Represents a SAML AuthnRequest sent by the Client to the IdP."""

    issuer: str
    destination: str
    acs_url: str
    id: str = field(default_factory=new_id)
    issue_instant: str = field(default_factory=lambda: format_instant(datetime.now(UTC)))
    name_id_policy: str = NAMEID_UNSPECIFIED

    def to_element(self) -> etree._Element:
        root = etree.Element(
            qname("samlp", "AuthnRequest"),
            nsmap={"samlp": SAML_NS["samlp"], "saml": SAML_NS["saml"]},
        )
        root.set("ID", self.id)
        root.set("Version", "2.0")
        root.set("IssueInstant", self.issue_instant)
        root.set("Destination", self.destination)
        root.set("AssertionConsumerServiceURL", self.acs_url)
        root.set("ProtocolBinding", HTTP_POST_BINDING)

        etree.SubElement(root, qname("saml", "Issuer")).text = self.issuer
        policy = etree.SubElement(root, qname("samlp", "NameIDPolicy"))
        policy.set("Format", self.name_id_policy)
        policy.set("AllowCreate", "true")
        return root

    def to_xml(self) -> str:
        """Generate the AuthnRequest XML."""
        return to_xml_string(self.to_element())

    def encode(self) -> str:
        """Encode request for HTTP-POST style transport (base64 only)."""
        return encode_base64_xml(self.to_xml())

    def redirect_url(self, sso_url: str) -> str:
        """IdP URL carrying this request in the ``samlRequest`` parameter."""
        separator = "&" if "?" in sso_url else "?"
        return f"{sso_url}{separator}{urlencode({'samlRequest': self.encode()})}"

    @classmethod
    def parse(cls, encoded: str) -> AuthnRequest:
        """Parse a base64-encoded AuthnRequest.

        Raises:
            MalformedRequest: If decoding or parsing fails or the issuer is missing.
        """
        try:
            root = parse_xml(decode_base64_xml(encoded))
        except MalformedAssertion as e:
            raise MalformedRequest(f"Invalid AuthnRequest: {e}") from e

        if root.tag != qname("samlp", "AuthnRequest"):
            raise MalformedRequest(f"Unexpected root element {etree.QName(root).localname}")

        issuer = root.findtext("saml:Issuer", namespaces=SAML_NS)
        if not issuer or not issuer.strip():
            raise MalformedRequest("AuthnRequest has no Issuer")

        policy = root.find("samlp:NameIDPolicy", SAML_NS)
        return cls(
            issuer=issuer.strip(),
            destination=root.get("Destination", ""),
            acs_url=root.get("AssertionConsumerServiceURL", ""),
            id=root.get("ID", ""),
            issue_instant=root.get("IssueInstant", ""),
            name_id_policy=(
                policy.get("Format", NAMEID_UNSPECIFIED) if policy is not None
                else NAMEID_UNSPECIFIED
            ),
        )
