"""OAuth2 Authorization Server routes.

SAMLAuthorize turns a validated SAML assertion into a local sign-in,
Authorize asks the signed-in user for consent and issues a code, and
Token redeems codes and refresh tokens.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from flask import Blueprint, Response, jsonify, redirect, render_template, request, session, url_for

from fedgate.core.errors import (
    FederationError,
    InvalidRequest,
    NotSignedIn,
    UnauthenticatedClient,
    UnsupportedGrantType,
    UnsupportedResponseType,
)
from fedgate.core.oauth.issuer import TokenPair
from fedgate.core.oauth.tickets import Ticket, split_scope
from fedgate.web.routes import get_services, render_error, validate_csrf_token

if TYPE_CHECKING:
    from werkzeug.wrappers import Response as WerkzeugResponse

logger = logging.getLogger(__name__)

# Get the directories relative to this package
_web_dir = Path(__file__).parent.parent
_templates_dir = _web_dir / "templates"

oauth_bp = Blueprint(
    "oauth",
    __name__,
    template_folder=str(_templates_dir),
    url_prefix="/OAuth",
)

# Session key for the federated subject signed in through SAMLAuthorize
SIGNED_IN_KEY = "federated_subject"

AUTHORIZE_PARAMS = ("redirect_uri", "state", "scope", "response_type")


@oauth_bp.route("/SAMLAuthorize", methods=["POST"])
def saml_authorize() -> tuple[str, int] | WerkzeugResponse:
    """Sign the caller in from a SAML assertion and continue to Authorize."""
    services = get_services()
    saml_token = request.form.get("samlToken", "")

    try:
        validated = services.assertion_validator.validate(saml_token)
    except FederationError as e:
        logger.warning("Rejected assertion (%s): %s", e.code, e)
        return render_error(e)

    services.token_issuer.remember_assertion(validated.subject, saml_token)
    session[SIGNED_IN_KEY] = validated.subject
    logger.info("Signed in %s from assertion %s", validated.subject, validated.assertion_id)

    params = {name: request.args[name] for name in AUTHORIZE_PARAMS if name in request.args}
    return redirect(url_for("oauth.authorize", client_id=validated.subject, **params))


@oauth_bp.route("/Authorize", methods=["GET", "POST"])
def authorize() -> str | tuple[str, int] | WerkzeugResponse:
    """Consent page; grant issues a code, decline signs out."""
    services = get_services()
    issuer = services.token_issuer

    client_id = request.args.get("client_id")
    redirect_uri = request.args.get("redirect_uri")
    state = request.args.get("state")
    scopes = split_scope(request.args.get("scope"))

    if request.args.get("response_type") != "code":
        raise UnsupportedResponseType(
            f"Unsupported response_type {request.args.get('response_type')!r}"
        )
    # Never redirect to an unregistered URI, so this is an error page
    if not issuer.validate_redirect_uri(client_id, redirect_uri):
        raise UnauthenticatedClient(f"redirect_uri not registered for {client_id!r}")

    subject = session.get(SIGNED_IN_KEY)
    if subject is None or subject != client_id:
        raise NotSignedIn(f"No sign-in for {client_id!r} (signed in: {subject!r})")

    error = None
    if request.method == "POST":
        if not validate_csrf_token():
            error = "Invalid request. Please try again."
        elif "submit.Grant" in request.form:
            ticket = Ticket.for_grant(subject, scopes, client_id, redirect_uri)
            params = {"code": issuer.issue_authorization_code(ticket)}
            if state:
                params["state"] = state
            return redirect(f"{redirect_uri}?{urlencode(params)}")
        elif "submit.Decline" in request.form:
            session.pop(SIGNED_IN_KEY, None)
            logger.info("%s declined the grant", subject)
            return redirect(services.config.authorization_server.decline_redirect_url)

    page = render_template(
        "oauth/authorize.html",
        client_id=client_id,
        subject=subject,
        scopes=scopes,
        action=request.full_path,
        error=error,
    )
    return (page, 400) if error else page


def _client_credentials() -> tuple[str | None, str | None]:
    """Client id and secret from HTTP Basic or, failing that, the form body.

    Raises:
        InvalidRequest: If Basic and form credentials name different clients.
    """
    auth = request.authorization
    form_id = request.form.get("client_id")
    if auth is not None and auth.type == "basic":
        if form_id and form_id != auth.username:
            raise InvalidRequest("client_id does not match the authenticated client")
        return auth.username, auth.password
    return form_id, request.form.get("client_secret")


def _token_response(body: dict[str, Any], status: int = 200) -> Response:
    response = jsonify(body)
    response.status_code = status
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
    return response


def _token_error(error: FederationError) -> Response:
    logger.info("Token request failed (%s): %s", error.code, error)
    response = _token_response(
        {"error": error.oauth_error, "error_description": str(error)},
        error.status_code,
    )
    if error.oauth_error == "invalid_client":
        response.headers["WWW-Authenticate"] = 'Basic realm="fedgate"'
    return response


@oauth_bp.route("/Token", methods=["POST"])
def token() -> Response:
    """Token endpoint for the authorization_code and refresh_token grants."""
    issuer = get_services().token_issuer
    grant_type = request.form.get("grant_type")

    try:
        client_id, client_secret = _client_credentials()
        pair: TokenPair
        if grant_type == "authorization_code":
            code = request.form.get("code")
            redirect_uri = request.form.get("redirect_uri")
            if not code or not client_id:
                raise InvalidRequest("code and client_id are required")
            if not issuer.validate_redirect_uri(client_id, redirect_uri):
                raise UnauthenticatedClient("redirect_uri is not registered for this client")
            pair = issuer.exchange_code_for_token(
                code,
                issuer.authenticate_client(client_id, client_secret),
                client_id=client_id,
                redirect_uri=redirect_uri,
            )
        elif grant_type == "refresh_token":
            refresh_token = request.form.get("refresh_token")
            if not refresh_token:
                raise InvalidRequest("refresh_token is required")
            pair = issuer.refresh_access_token(refresh_token, client_id=client_id)
        else:
            raise UnsupportedGrantType(f"Unsupported grant_type {grant_type!r}")
    except FederationError as e:
        return _token_error(e)

    return _token_response(pair.to_dict())
