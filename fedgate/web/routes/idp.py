"""SAML Identity Provider routes."""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlencode

from flask import Blueprint, render_template, request

from fedgate.core.errors import InvalidCredentials, MalformedRequest, UntrustedIssuer
from fedgate.core.saml.request import AuthnRequest
from fedgate.web.routes import get_services, render_error, validate_csrf_token

logger = logging.getLogger(__name__)

# Get the directories relative to this package
_web_dir = Path(__file__).parent.parent
_templates_dir = _web_dir / "templates"

idp_bp = Blueprint(
    "idp",
    __name__,
    template_folder=str(_templates_dir),
    url_prefix="/SAML",
)


def _not_trusted(requester: str | None) -> tuple[str, int]:
    return render_template("idp/not_trusted.html", requester=requester), 403


@idp_bp.route("/AuthnRequest")
def authn_request() -> str | tuple[str, int]:
    """Accept an AuthnRequest and show the credential form to trusted requesters."""
    encoded = request.args.get("samlRequest", "")
    try:
        authn = AuthnRequest.parse(encoded)
    except MalformedRequest as e:
        logger.warning("Rejected AuthnRequest: %s", e)
        return render_error(e)

    if not get_services().requesters.is_trusted(authn.issuer):
        logger.warning("AuthnRequest %s from untrusted requester %r", authn.id, authn.issuer)
        return _not_trusted(authn.issuer)

    logger.info("AuthnRequest %s from %s", authn.id, authn.issuer)
    return render_template(
        "idp/login.html",
        requester=authn.issuer,
        request_id=authn.id,
        error=None,
    )


@idp_bp.route("/AuthenticateUser", methods=["POST"])
def authenticate_user() -> str | tuple[str, int]:
    """Check credentials and post a signed assertion back to the requester."""
    username = request.form.get("username", "").strip()
    password = request.form.get("password", "")
    requester = request.form.get("requester") or None
    request_id = request.form.get("request_id") or None

    if not validate_csrf_token():
        return render_template(
            "idp/login.html",
            requester=requester,
            request_id=request_id,
            username=username,
            error="Invalid request. Please try again.",
        ), 400

    services = get_services()
    if requester is None:
        return _not_trusted(None)

    try:
        assertion = services.assertion_service.issue_assertion(
            username,
            services.credentials.verify(username, password),
            requester=requester,
            in_response_to=request_id,
        )
    except InvalidCredentials:
        logger.info("Failed login for %r", username)
        return render_template(
            "idp/login.html",
            requester=requester,
            request_id=request_id,
            username=username,
            error="Invalid credentials",
        ), 401
    except UntrustedIssuer:
        return _not_trusted(requester)

    # Return URLs are registered without query strings
    action = f"{assertion.destination}?{urlencode({'username': assertion.subject})}"
    return render_template(
        "autopost.html",
        action=action,
        fields={"samlResponse": assertion.encoded},
        title="Signing in",
    )
