"""SAML2 Browser SSO: AuthnRequest, signed assertions and their validation."""

from fedgate.core.saml.assertion import AssertionService, SignedAssertion
from fedgate.core.saml.request import AuthnRequest
from fedgate.core.saml.signature import SignatureEngine, VerifiedElement
from fedgate.core.saml.utils import SAML_NS, STATUS_SUCCESS, assertion_fingerprint
from fedgate.core.saml.validator import AssertionValidator, ValidatedAssertion

__all__ = [
    "SAML_NS",
    "STATUS_SUCCESS",
    "AssertionService",
    "AssertionValidator",
    "AuthnRequest",
    "SignatureEngine",
    "SignedAssertion",
    "ValidatedAssertion",
    "VerifiedElement",
    "assertion_fingerprint",
]
