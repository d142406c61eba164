"""XML-DSig signing and verification.

Thin wrapper over signxml. Signatures are enveloped, RSA-SHA256 with
SHA-256 digests and exclusive canonicalization, and always reference
the document root by its ``ID`` attribute.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from lxml import etree
from signxml import XMLSigner, XMLVerifier, methods
from signxml.algorithms import CanonicalizationMethod, DigestAlgorithm, SignatureMethod
from signxml.exceptions import SignXMLException

from fedgate.core.errors import InvalidSignature
from fedgate.core.saml.utils import SAML_NS, parse_xml, qname

logger = logging.getLogger(__name__)

PLACEHOLDER_ID = "placeholder"


@dataclass
class VerifiedElement:
    """The element covered by a signature that verified."""

    element: etree._Element
    signature_algorithm: str | None = None
    digest_algorithm: str | None = None

    @property
    def id(self) -> str | None:
        return self.element.get("ID")


def _cert_pem(cert: x509.Certificate | str | bytes) -> str:
    if isinstance(cert, x509.Certificate):
        return cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
    if isinstance(cert, bytes):
        return cert.decode("utf-8")
    return cert


def _key_pem(key: rsa.RSAPrivateKey | str | bytes) -> bytes:
    if isinstance(key, rsa.RSAPrivateKey):
        return key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    if isinstance(key, str):
        return key.encode("utf-8")
    return key


def insert_signature_placeholder(root: etree._Element) -> etree._Element:
    """Reserve the schema-mandated signature position (right after Issuer)."""
    placeholder = etree.Element(qname("ds", "Signature"), nsmap={"ds": SAML_NS["ds"]})
    placeholder.set("Id", PLACEHOLDER_ID)
    issuer = root.find("saml:Issuer", SAML_NS)
    if issuer is not None:
        issuer.addnext(placeholder)
    else:
        root.insert(0, placeholder)
    return placeholder


def find_signature(root: etree._Element) -> etree._Element | None:
    """Return the root-level ds:Signature element, if any."""
    return root.find("ds:Signature", SAML_NS)


class SignatureEngine:
    """Produces and checks enveloped XML signatures over a whole document."""

    def __init__(
        self,
        signature_algorithm: SignatureMethod = SignatureMethod.RSA_SHA256,
        digest_algorithm: DigestAlgorithm = DigestAlgorithm.SHA256,
        c14n_algorithm: CanonicalizationMethod = CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
    ) -> None:
        self.signature_algorithm = signature_algorithm
        self.digest_algorithm = digest_algorithm
        self.c14n_algorithm = c14n_algorithm

    def sign(
        self,
        payload: etree._Element,
        key: rsa.RSAPrivateKey | str | bytes,
        cert: x509.Certificate | str | bytes,
    ) -> etree._Element:
        """Sign ``payload`` and return the signed document root.

        The signature references the root's ``ID``. If the payload holds a
        ``ds:Signature Id="placeholder"`` element the signature is written
        there, otherwise one is inserted after the root's Issuer.
        """
        root_id = payload.get("ID")
        if not root_id:
            raise ValueError("Cannot sign an element without an ID attribute")

        if payload.find(f".//ds:Signature[@Id='{PLACEHOLDER_ID}']", SAML_NS) is None:
            insert_signature_placeholder(payload)

        signer = XMLSigner(
            method=methods.enveloped,
            signature_algorithm=self.signature_algorithm,
            digest_algorithm=self.digest_algorithm,
            c14n_algorithm=self.c14n_algorithm,
        )
        signed = signer.sign(
            payload,
            key=_key_pem(key),
            cert=_cert_pem(cert),
            reference_uri=f"#{root_id}",
            id_attribute="ID",
        )
        logger.debug("Signed <%s> %s", etree.QName(signed).localname, root_id)
        return signed

    def verify(
        self,
        signed_payload: etree._Element | str | bytes,
        cert: x509.Certificate | str | bytes,
    ) -> VerifiedElement:
        """Verify the signature on a document against a pinned certificate.

        The signed element must be the document root itself; a valid
        signature over some other element (signature wrapping) is rejected.

        Raises:
            InvalidSignature: If the signature is missing, does not verify,
                or does not cover the root.
        """
        if isinstance(signed_payload, (str, bytes)):
            root = parse_xml(signed_payload)
        else:
            root = signed_payload

        if find_signature(root) is None:
            raise InvalidSignature("Document is not signed")

        root_id = root.get("ID")
        if root_id and len(root.xpath("//*[@ID=$id]", id=root_id)) > 1:
            raise InvalidSignature(f"ID {root_id!r} appears more than once (wrapping)")

        try:
            result = XMLVerifier().verify(root, x509_cert=_cert_pem(cert), id_attribute="ID")
        except SignXMLException as e:
            logger.info("Signature verification failed: %s", e)
            raise InvalidSignature(f"Signature verification failed: {e}") from e

        signed_xml = result.signed_xml
        if (
            signed_xml is None
            or signed_xml.tag != root.tag
            or signed_xml.get("ID") != root.get("ID")
        ):
            raise InvalidSignature("Signature does not cover the document root (wrapping)")

        signature_xml = result.signature_xml
        sig_method = signature_xml.find("ds:SignedInfo/ds:SignatureMethod", SAML_NS)
        digest_method = signature_xml.find(
            "ds:SignedInfo/ds:Reference/ds:DigestMethod", SAML_NS
        )
        return VerifiedElement(
            element=signed_xml,
            signature_algorithm=sig_method.get("Algorithm") if sig_method is not None else None,
            digest_algorithm=(
                digest_method.get("Algorithm") if digest_method is not None else None
            ),
        )
