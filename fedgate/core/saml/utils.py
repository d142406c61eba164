"""SAML utility functions."""

from __future__ import annotations

import base64
import binascii
import hashlib
import secrets
from datetime import UTC, datetime

from lxml import etree

from fedgate.core.errors import MalformedAssertion

# SAML namespaces
SAML_NS = {
    "samlp": "urn:oasis:names:tc:SAML:2.0:protocol",
    "saml": "urn:oasis:names:tc:SAML:2.0:assertion",
    "ds": "http://www.w3.org/2000/09/xmldsig#",
}

STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"
STATUS_REQUESTER = "urn:oasis:names:tc:SAML:2.0:status:Requester"
NAMEID_UNSPECIFIED = "urn:oasis:names:tc:SAML:1.1:nameid-format:unspecified"
BEARER_CONFIRMATION = "urn:oasis:names:tc:SAML:2.0:cm:bearer"
PASSWORD_PROTECTED_TRANSPORT = (
    "urn:oasis:names:tc:SAML:2.0:ac:classes:PasswordProtectedTransport"
)
HTTP_POST_BINDING = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"

SAML_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def qname(prefix: str, local: str) -> str:
    """Clark-notation tag for a prefixed SAML name."""
    return f"{{{SAML_NS[prefix]}}}{local}"


def new_id() -> str:
    """Generate an xs:ID value (must not start with a digit)."""
    return f"_{secrets.token_hex(16)}"


def format_instant(value: datetime) -> str:
    return value.astimezone(UTC).strftime(SAML_TIME_FORMAT)


def parse_instant(value: str | None) -> datetime | None:
    """Parse an xs:dateTime attribute, returning None when absent."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise MalformedAssertion(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parser() -> etree.XMLParser:
    # No entity expansion or network access. Comments are dropped because
    # canonicalization leaves them out of the signed digest.
    return etree.XMLParser(
        resolve_entities=False,
        no_network=True,
        remove_comments=True,
        huge_tree=False,
    )


def parse_xml(xml: str | bytes) -> etree._Element:
    """Parse untrusted XML with a hardened parser.

    Raises:
        MalformedAssertion: If the document is not well-formed.
    """
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    try:
        root = etree.fromstring(xml, parser=_parser())
    except etree.XMLSyntaxError as e:
        raise MalformedAssertion(f"Failed to parse XML: {e}") from e
    if root is None:
        raise MalformedAssertion("Empty XML document")
    return root


def decode_base64_xml(encoded: str) -> bytes:
    """Decode a base64 SAML message (HTTP-POST encoding).

    Raises:
        MalformedAssertion: If the value is not valid base64.
    """
    try:
        # HTTP-POST payloads are often wrapped at 76 columns
        return base64.b64decode("".join(encoded.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedAssertion(f"Failed to decode base64 message: {e}") from e


def encode_base64_xml(xml: str | bytes) -> str:
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    return base64.b64encode(xml).decode("ascii")


def to_xml_string(element: etree._Element) -> str:
    return etree.tostring(element, encoding="unicode")


def assertion_fingerprint(saml_token: str) -> str:
    """SHA-256 hex digest of a base64 SAML token.

    The Authorization Server treats this value as the client secret of
    the federated subject the token was issued for.
    """
    return hashlib.sha256(saml_token.encode("utf-8")).hexdigest()


def looks_like_xml(value: str) -> bool:
    return value.lstrip().startswith("<")
