"""Protected resource routes."""

from __future__ import annotations

import logging

from flask import Blueprint, Response, request

from fedgate.core.errors import Unauthenticated
from fedgate.web.routes import get_services

logger = logging.getLogger(__name__)

resource_bp = Blueprint("resource", __name__, url_prefix="/api")


@resource_bp.route("/Resource")
def get_resource() -> Response:
    """List the caller's claims as plain text."""
    try:
        claims = get_services().resource_guard.authorize_request(request)
    except Unauthenticated as e:
        response = Response(str(e), status=e.status_code, mimetype="text/plain")
        response.headers["WWW-Authenticate"] = e.challenge
        return response

    logger.info("Resource accessed by %s", claims.name)
    return Response(claims.format_listing(), mimetype="text/plain")
