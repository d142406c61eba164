"""Exception taxonomy for the federation protocol.

Every failure a login attempt can hit is a ``FederationError``. Each class
carries a stable ``code`` (used in logs and error views) and the OAuth2
``error`` value returned by the Token and Resource endpoints.

None of these are fatal to the process: the user restarts the flow.
"""

from __future__ import annotations


class FederationError(Exception):
    """Base exception for federation and token-issuance failures."""

    code = "federation_error"
    oauth_error = "invalid_request"
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class ConfigurationError(FederationError):
    """Invalid or incomplete configuration."""

    code = "configuration_error"
    oauth_error = "server_error"
    status_code = 500


# SAML assertion errors


class MalformedRequest(FederationError):
    """The SAML AuthnRequest could not be decoded or parsed."""

    code = "malformed_request"


class InvalidCredentials(FederationError):
    """The supplied username/password did not match."""

    code = "invalid_credentials"
    oauth_error = "access_denied"
    status_code = 401


class UnknownSubject(FederationError):
    """The local subject has no federated identity mapping."""

    code = "unknown_subject"
    oauth_error = "access_denied"
    status_code = 403


class MalformedAssertion(FederationError):
    """The SAML payload could not be decoded or parsed."""

    code = "malformed_assertion"


class UntrustedIssuer(FederationError):
    """The issuer or requester is not in the trust registry."""

    code = "untrusted_issuer"
    oauth_error = "access_denied"
    status_code = 403


class AssertionDenied(FederationError):
    """The SAML status code does not indicate success."""

    code = "assertion_denied"
    oauth_error = "access_denied"
    status_code = 403


class MissingSubject(FederationError):
    """The assertion carries no subject identifier."""

    code = "missing_subject"


class UnknownFederatedSubject(FederationError):
    """The asserted subject is not a known federated identity."""

    code = "unknown_federated_subject"
    oauth_error = "access_denied"
    status_code = 403


class InvalidSignature(FederationError):
    """The XML signature did not verify against the pinned certificate."""

    code = "invalid_signature"
    oauth_error = "access_denied"
    status_code = 403


class AssertionExpired(FederationError):
    """The assertion is outside its validity window."""

    code = "assertion_expired"
    oauth_error = "access_denied"
    status_code = 403


# OAuth2 errors


class InvalidRequest(FederationError):
    """The request is missing a required parameter or is otherwise malformed."""

    code = "invalid_request"


class UnsupportedGrantType(FederationError):
    """The grant type is not supported by the Token endpoint."""

    code = "unsupported_grant_type"
    oauth_error = "unsupported_grant_type"


class UnsupportedResponseType(FederationError):
    """Only the authorization code response type is supported."""

    code = "unsupported_response_type"
    oauth_error = "unsupported_response_type"


class NotSignedIn(FederationError):
    """No federated sign-in is active for this client."""

    code = "not_signed_in"
    oauth_error = "access_denied"
    status_code = 401


class InvalidGrant(FederationError):
    """The authorization code is invalid, already used or issued to someone else."""

    code = "invalid_grant"
    oauth_error = "invalid_grant"


class InvalidOrUsedCode(InvalidGrant):
    """The authorization code is unknown or was already redeemed."""

    code = "invalid_or_used_code"


class UnauthenticatedClient(FederationError):
    """Client authentication failed (bad secret or redirect URI)."""

    code = "unauthenticated_client"
    oauth_error = "invalid_client"
    status_code = 401


class InvalidTicket(FederationError):
    """The serialized ticket could not be unprotected."""

    code = "invalid_ticket"
    oauth_error = "invalid_grant"


class InvalidOrExpiredToken(FederationError):
    """The bearer token is invalid or has expired."""

    code = "invalid_or_expired_token"
    oauth_error = "invalid_token"
    status_code = 401


class Unauthenticated(FederationError):
    """The request carries no usable bearer token."""

    code = "unauthenticated"
    oauth_error = "invalid_token"
    status_code = 401

    def __init__(self, message: str | None = None, error_description: str | None = None) -> None:
        super().__init__(message)
        self.error_description = error_description

    @property
    def challenge(self) -> str:
        """Value for the ``WWW-Authenticate`` response header."""
        if self.error_description is None:
            return 'Bearer realm="resource"'
        return (
            f'Bearer realm="resource", error="{self.oauth_error}", '
            f'error_description="{self.error_description}"'
        )


# Client-side flow errors


class UnknownOrUsedState(FederationError):
    """The state parameter does not match a pending flow."""

    code = "unknown_or_used_state"


class UpstreamUnavailable(FederationError):
    """A cooperating service could not be reached or answered unexpectedly."""

    code = "upstream_unavailable"
    oauth_error = "temporarily_unavailable"
    status_code = 502


class InvalidTransition(FederationError):
    """The login flow cannot move to the requested state."""

    code = "invalid_transition"
    oauth_error = "server_error"
    status_code = 500
