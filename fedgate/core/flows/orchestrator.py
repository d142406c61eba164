"""Client-side login flow orchestration.

A login spans three independent HTTP round-trips (IdP, Authorization
Server, Token endpoint). ``FlowState`` follows one attempt through them
and refuses out-of-order steps. The ``state`` parameter must match the
id stored in the session's own ``FlowState``, and the ``GrantStore``
holds the server-side correlation between that id and the assertion
that was relayed, so a code can only be redeemed by the flow that
asked for it.

State lives in the browser session between requests (``to_dict`` /
``from_dict``); the orchestrator itself is stateless.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from urllib.parse import urlencode

from fedgate.core.config import ClientSettings
from fedgate.core.errors import (
    FederationError,
    InvalidGrant,
    InvalidTransition,
    MissingSubject,
    UnauthenticatedClient,
    UnknownOrUsedState,
    UpstreamUnavailable,
)
from fedgate.core.flows.gateway import FederationGateway, TokenResponse
from fedgate.core.oauth.grants import GrantStore, generate_state_id
from fedgate.core.saml.request import AuthnRequest
from fedgate.core.saml.utils import assertion_fingerprint

logger = logging.getLogger(__name__)


class FlowStatus(StrEnum):
    """Where a client-side login attempt currently is."""

    IDLE = "idle"
    AUTHN_REQUESTED = "authn_requested"
    ASSERTION_RECEIVED = "assertion_received"
    GRANT_REQUESTED = "grant_requested"
    CODE_RECEIVED = "code_received"
    TOKEN_RECEIVED = "token_received"
    RESOURCE_ACCESS_ATTEMPTED = "resource_access_attempted"
    FAILED = "failed"


# Forward moves plus restarts. FAILED is reachable from every state.
ALLOWED_TRANSITIONS: dict[FlowStatus, frozenset[FlowStatus]] = {
    FlowStatus.IDLE: frozenset({
        FlowStatus.AUTHN_REQUESTED,
        # IdP-initiated: an unsolicited assertion starts a flow
        FlowStatus.ASSERTION_RECEIVED,
        # A token from an earlier session
        FlowStatus.RESOURCE_ACCESS_ATTEMPTED,
    }),
    FlowStatus.AUTHN_REQUESTED: frozenset({FlowStatus.ASSERTION_RECEIVED, FlowStatus.IDLE}),
    FlowStatus.ASSERTION_RECEIVED: frozenset({FlowStatus.GRANT_REQUESTED}),
    FlowStatus.GRANT_REQUESTED: frozenset({FlowStatus.CODE_RECEIVED, FlowStatus.IDLE}),
    FlowStatus.CODE_RECEIVED: frozenset({FlowStatus.TOKEN_RECEIVED}),
    FlowStatus.TOKEN_RECEIVED: frozenset({
        FlowStatus.RESOURCE_ACCESS_ATTEMPTED,
        FlowStatus.IDLE,
    }),
    FlowStatus.RESOURCE_ACCESS_ATTEMPTED: frozenset({
        FlowStatus.RESOURCE_ACCESS_ATTEMPTED,
        FlowStatus.IDLE,
    }),
    FlowStatus.FAILED: frozenset({FlowStatus.IDLE}),
}


# Older entries are dropped so the session cookie stays small
MAX_TRANSITIONS = 20


def _new_flow_id() -> str:
    return secrets.token_hex(8)


@dataclass
class FlowState:
    """One client-side login attempt.

    Stored in the Flask session between the redirect hops.
    """

    flow_id: str = field(default_factory=_new_flow_id)
    status: FlowStatus = FlowStatus.IDLE
    subject: str | None = None
    state_id: str | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    transitions: list[dict[str, Any]] = field(default_factory=list)

    def can_transition(self, target: FlowStatus) -> bool:
        return target == FlowStatus.FAILED or target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: FlowStatus, reason: str | None = None) -> None:
        """Move to ``target``.

        Raises:
            InvalidTransition: If the move is not allowed from the current status.
        """
        if not self.can_transition(target):
            raise InvalidTransition(f"Cannot move login flow from {self.status} to {target}")
        self.transitions.append({
            "from": str(self.status),
            "to": str(target),
            "at": datetime.now(UTC).isoformat(),
            "reason": reason,
        })
        del self.transitions[:-MAX_TRANSITIONS]
        self.status = target

    def fail(self, reason: str) -> None:
        self.error = reason
        self.transition(FlowStatus.FAILED, reason)

    def restart(self) -> None:
        """Return to idle, forgetting the previous attempt's correlation."""
        if self.status != FlowStatus.IDLE:
            self.transition(FlowStatus.IDLE, "restart")
        self.subject = None
        self.state_id = None
        self.error = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for session storage."""
        return {
            "flow_id": self.flow_id,
            "status": str(self.status),
            "subject": self.subject,
            "state_id": self.state_id,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "transitions": list(self.transitions),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FlowState:
        """Reconstruct from dictionary."""
        return cls(
            flow_id=data["flow_id"],
            status=FlowStatus(data["status"]),
            subject=data.get("subject"),
            state_id=data.get("state_id"),
            error=data.get("error"),
            started_at=(
                datetime.fromisoformat(data["started_at"])
                if data.get("started_at")
                else datetime.now(UTC)
            ),
            transitions=list(data.get("transitions", [])),
        )


@dataclass(frozen=True)
class AuthorizeHandoff:
    """What the browser must POST to the Authorization Server."""

    url: str
    saml_token: str
    state_id: str


@dataclass
class ResourceOutcome:
    """Result of trying to reach the protected resource."""

    body: str | None = None
    redirect_url: str | None = None
    token_rejected: bool = False

    @property
    def needs_login(self) -> bool:
        return self.redirect_url is not None


class FlowOrchestrator:
    """Drives the IdP -> Authorization Server -> Token endpoint chain."""

    def __init__(
        self,
        settings: ClientSettings,
        gateway: FederationGateway,
        grants: GrantStore,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.grants = grants

    def begin_login(self, state: FlowState) -> str:
        """Start (or restart) a login and return the IdP redirect URL."""
        state.restart()
        request = AuthnRequest(
            issuer=self.settings.base_url,
            destination=self.settings.idp_sso_url,
            acs_url=f"{self.settings.base_url.rstrip('/')}/Client/AuthnResponse",
        )
        state.transition(FlowStatus.AUTHN_REQUESTED)
        logger.info("Flow %s: sending AuthnRequest %s", state.flow_id, request.id)
        return request.redirect_url(self.settings.idp_sso_url)

    def access_resource(self, state: FlowState, access_token: str | None) -> ResourceOutcome:
        """Call the resource with the stored token, or start a login.

        A rejected token restarts the flow at idle and yields a fresh IdP
        redirect; there is no automatic retry.

        Raises:
            UpstreamUnavailable: If the resource server fails unexpectedly.
        """
        if not access_token:
            return ResourceOutcome(redirect_url=self.begin_login(state))

        if not state.can_transition(FlowStatus.RESOURCE_ACCESS_ATTEMPTED):
            state.restart()
        state.transition(FlowStatus.RESOURCE_ACCESS_ATTEMPTED)

        response = self.gateway.fetch_resource(access_token, flow_id=state.flow_id)
        if response.is_unauthorized:
            logger.info("Flow %s: resource rejected the token, restarting", state.flow_id)
            return ResourceOutcome(redirect_url=self.begin_login(state), token_rejected=True)
        if not response.is_success:
            state.fail(f"Resource server returned {response.status_code}")
            raise UpstreamUnavailable(f"Resource server returned {response.status_code}")
        return ResourceOutcome(body=response.body)

    def receive_assertion(
        self, state: FlowState, subject: str | None, saml_response: str | None
    ) -> AuthorizeHandoff:
        """Correlate an IdP assertion with a new state id for the grant request.

        Raises:
            MissingSubject: If the IdP did not name the subject.
            InvalidTransition: If the flow is mid-exchange.
        """
        if state.status not in (FlowStatus.IDLE, FlowStatus.AUTHN_REQUESTED):
            state.restart()
        if not subject or not saml_response:
            state.fail("assertion response without subject or token")
            raise MissingSubject("Assertion response is missing the subject or token")

        state.transition(FlowStatus.ASSERTION_RECEIVED)
        state.subject = subject

        state_id = generate_state_id()
        self.grants.begin_flow(state_id, subject, assertion_fingerprint(saml_response))
        state.state_id = state_id

        params = {
            "redirect_uri": self.settings.redirect_uri,
            "state": state_id,
            "scope": self.settings.scope,
            "response_type": "code",
        }
        separator = "&" if "?" in self.settings.saml_authorize_url else "?"
        url = f"{self.settings.saml_authorize_url}{separator}{urlencode(params)}"

        state.transition(FlowStatus.GRANT_REQUESTED)
        logger.info("Flow %s: relaying assertion for %s", state.flow_id, subject)
        return AuthorizeHandoff(url=url, saml_token=saml_response, state_id=state_id)

    def receive_code(
        self, state: FlowState, code: str | None, state_id: str | None
    ) -> TokenResponse:
        """Redeem the code returned to the redirect URI.

        Raises:
            InvalidTransition: If no grant was requested in this flow.
            UnknownOrUsedState: If ``state_id`` matches no pending flow.
            UnauthenticatedClient: If the Token endpoint refused the client.
            InvalidGrant: If the Token endpoint refused the code.
        """
        if not state.can_transition(FlowStatus.CODE_RECEIVED):
            raise InvalidTransition(f"No grant was requested (flow is {state.status})")

        # The redirect must carry the state this session handed out
        if not state_id or state_id != state.state_id:
            error = UnknownOrUsedState("State does not belong to this session")
            logger.warning("Flow %s: redirect carried a foreign state", state.flow_id)
            state.fail(error.code)
            raise error

        try:
            pending = self.grants.end_flow(state_id or "")
        except FederationError as e:
            state.fail(e.code)
            raise

        state.transition(FlowStatus.CODE_RECEIVED)
        if not code:
            state.fail("redirect without authorization code")
            raise InvalidGrant("Authorization server returned no code")

        token = self.gateway.redeem_code(
            code,
            client_id=pending.federated_subject,
            client_secret=pending.assertion_fingerprint,
            flow_id=state.flow_id,
        )
        if not token.is_success:
            state.fail(token.error or "token_error")
            logger.warning(
                "Flow %s: token exchange failed: %s %s",
                state.flow_id,
                token.error,
                token.error_description,
            )
            if token.error == "invalid_client":
                raise UnauthenticatedClient(token.error_description)
            raise InvalidGrant(token.error_description)

        state.transition(FlowStatus.TOKEN_RECEIVED)
        logger.info(
            "Flow %s: received access token for %s", state.flow_id, pending.federated_subject
        )
        return token
