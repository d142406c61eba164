"""Web routes for fedgate."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING, cast

from flask import Blueprint, Flask, current_app, render_template, request, session

from fedgate.core.errors import FederationError

if TYPE_CHECKING:
    from fedgate.app import FederationServices

logger = logging.getLogger(__name__)

# Get the directories relative to this package
_web_dir = Path(__file__).parent.parent
_templates_dir = _web_dir / "templates"

main_bp = Blueprint(
    "main",
    __name__,
    template_folder=str(_templates_dir),
)

CSRF_TOKEN_KEY = "csrf_token"


def get_services() -> FederationServices:
    """Get the service container from the app context."""
    return cast("FederationServices", current_app.extensions["fedgate"])


def generate_csrf_token() -> str:
    """Generate a CSRF token and store it in the session."""
    if CSRF_TOKEN_KEY not in session:
        session[CSRF_TOKEN_KEY] = secrets.token_hex(32)
    return str(session[CSRF_TOKEN_KEY])


def validate_csrf_token() -> bool:
    """Validate the CSRF token from the form."""
    form_token = request.form.get("csrf_token")
    session_token = session.get(CSRF_TOKEN_KEY)
    if not form_token or not session_token:
        return False
    return secrets.compare_digest(form_token, session_token)


def render_error(error: FederationError) -> tuple[str, int]:
    """Render the generic error page for a protocol failure.

    The page shows the error category only; details go to the log.
    """
    return (
        render_template(
            "error.html",
            code=error.code,
            summary=error.__class__.__doc__ or "The request could not be completed.",
        ),
        error.status_code,
    )


def handle_federation_error(error: FederationError) -> tuple[str, int]:
    logger.warning("%s on %s: %s", error.code, request.path, error)
    return render_error(error)


@main_bp.route("/")
def index() -> str:
    """Render the landing page listing the hosted services."""
    return render_template("index.html", services=get_services().services)


@main_bp.route("/health")
def health() -> dict[str, str]:
    """Health check endpoint (unauthenticated)."""
    return {"status": "healthy"}


def init_app(app: Flask, services: Iterable[str]) -> None:
    """Register blueprints for the hosted services with the Flask app."""
    from fedgate.web.routes.client import client_bp
    from fedgate.web.routes.idp import idp_bp
    from fedgate.web.routes.oauth import oauth_bp
    from fedgate.web.routes.resource import resource_bp

    blueprints = {
        "idp": idp_bp,
        "authz": oauth_bp,
        "client": client_bp,
        "resource": resource_bp,
    }

    app.register_blueprint(main_bp)
    for service in services:
        app.register_blueprint(blueprints[service])

    app.register_error_handler(FederationError, handle_federation_error)
    app.jinja_env.globals["csrf_token"] = generate_csrf_token
