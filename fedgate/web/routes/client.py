"""Relying Client routes.

The Client never sees the user's password: it sends an AuthnRequest to
the IdP, relays the assertion it gets back to the Authorization Server,
redeems the resulting code and keeps the access token in an HTTP-only
cookie for resource calls.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from flask import Blueprint, redirect, render_template, request, session, url_for

from fedgate.core.flows.orchestrator import FlowOrchestrator, FlowState
from fedgate.web.routes import get_services

if TYPE_CHECKING:
    from werkzeug.wrappers import Response as WerkzeugResponse

logger = logging.getLogger(__name__)

# Get the directories relative to this package
_web_dir = Path(__file__).parent.parent
_templates_dir = _web_dir / "templates"

client_bp = Blueprint(
    "client",
    __name__,
    template_folder=str(_templates_dir),
    url_prefix="/Client",
)

# Session keys
FLOW_STATE_KEY = "client_flow_state"
RESOURCE_BODY_KEY = "client_resource_body"

TOKEN_COOKIE = "OAuthToken"


def _load_flow() -> FlowState:
    state_dict = session.get(FLOW_STATE_KEY)
    return FlowState.from_dict(state_dict) if state_dict else FlowState()


def _save_flow(state: FlowState) -> None:
    session[FLOW_STATE_KEY] = state.to_dict()


def _orchestrator() -> FlowOrchestrator:
    return get_services().orchestrator


@client_bp.route("/")
def main() -> str:
    """Landing page showing the last resource response."""
    return render_template(
        "client/main.html",
        state=_load_flow(),
        resource_body=session.pop(RESOURCE_BODY_KEY, None),
        has_token=TOKEN_COOKIE in request.cookies,
    )


@client_bp.route("/GetResource")
def get_resource() -> WerkzeugResponse:
    """Call the protected resource, or start a login if there is no usable token."""
    state = _load_flow()
    try:
        outcome = _orchestrator().access_resource(state, request.cookies.get(TOKEN_COOKIE))
    finally:
        _save_flow(state)

    if outcome.needs_login:
        response = redirect(outcome.redirect_url)
        if outcome.token_rejected:
            response.delete_cookie(TOKEN_COOKIE)
        return response

    session[RESOURCE_BODY_KEY] = outcome.body
    return redirect(url_for("client.main"))


@client_bp.route("/AuthnResponse", methods=["POST"])
def authn_response() -> str:
    """Relay the IdP's assertion to the Authorization Server."""
    subject = request.args.get("username") or request.form.get("username")
    state = _load_flow()
    try:
        handoff = _orchestrator().receive_assertion(
            state, subject, request.form.get("samlResponse")
        )
    finally:
        _save_flow(state)

    return render_template(
        "autopost.html",
        action=handoff.url,
        fields={"samlToken": handoff.saml_token},
        title="Requesting access",
    )


@client_bp.route("/OAuthRedirect")
def oauth_redirect() -> WerkzeugResponse:
    """Redeem the authorization code and store the access token."""
    state = _load_flow()
    try:
        token = _orchestrator().receive_code(
            state, request.args.get("code"), request.args.get("state")
        )
    finally:
        _save_flow(state)

    logger.info("Flow %s: storing access token", state.flow_id)
    response = redirect(url_for("client.main"))
    response.set_cookie(
        TOKEN_COOKIE,
        token.access_token,
        max_age=token.expires_in,
        httponly=True,
        secure=request.is_secure,
        samesite="Lax",
    )
    return response
