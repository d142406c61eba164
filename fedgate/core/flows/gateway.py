"""Outbound calls from the Client to the Authorization and Resource servers.

Every call goes through a ``LoggingClient`` so each hop of a login is
recorded in the protocol log under its flow id.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any

import httpx

from fedgate.core.config import ClientSettings
from fedgate.core.errors import UpstreamUnavailable
from fedgate.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger


def basic_auth_header(client_id: str, client_secret: str) -> str:
    credentials = f"{client_id}:{client_secret}".encode()
    return "Basic " + base64.b64encode(credentials).decode("ascii")


@dataclass
class TokenResponse:
    """Represents an OAuth2 token response."""

    access_token: str
    token_type: str
    expires_in: int | None = None
    refresh_token: str | None = None

    # Raw response for debugging
    raw_response: dict[str, Any] = field(default_factory=dict)

    # Error information
    error: str | None = None
    error_description: str | None = None

    @property
    def is_success(self) -> bool:
        """Check if the token response is successful."""
        return self.error is None and bool(self.access_token)


@dataclass
class ResourceResponse:
    """What the resource server answered to a bearer request."""

    status_code: int
    body: str
    www_authenticate: str | None = None

    @property
    def is_unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class FederationGateway:
    """HTTP client for the Token endpoint and the protected resource."""

    def __init__(
        self,
        settings: ClientSettings,
        protocol_logger: ProtocolLogger | None = None,
        mounts: dict[str, httpx.BaseTransport] | None = None,
    ) -> None:
        """Initialize the gateway.

        Args:
            settings: Client settings with endpoint URLs and timeouts.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            mounts: Optional httpx transports keyed by URL pattern, used to
                route calls to in-process apps.
        """
        self.settings = settings
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._mounts = mounts
        self._http_client: LoggingClient | None = None

    @property
    def http_client(self) -> LoggingClient:
        """Get or create HTTP client with logging."""
        if self._http_client is None:
            self._http_client = LoggingClient(
                protocol_logger=self._protocol_logger,
                timeout=httpx.Timeout(self.settings.http_timeout_seconds),
                verify=self.settings.verify_tls,
                mounts=self._mounts,
            )
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def redeem_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        flow_id: str | None = None,
    ) -> TokenResponse:
        """Exchange an authorization code, authenticating with HTTP Basic.

        Raises:
            UpstreamUnavailable: If the Token endpoint cannot be reached.
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.redirect_uri,
            "client_id": client_id,
        }
        return self._token_request(data, basic_auth_header(client_id, client_secret), flow_id)

    def fetch_resource(self, access_token: str, flow_id: str | None = None) -> ResourceResponse:
        """GET the protected resource with a bearer token.

        Raises:
            UpstreamUnavailable: If the resource server cannot be reached.
        """
        request = self.http_client.build_request(
            "GET",
            self.settings.resource_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        try:
            response = self.http_client.send_logged(request, flow_id)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Resource server request failed: {e}") from e

        return ResourceResponse(
            status_code=response.status_code,
            body=response.text,
            www_authenticate=response.headers.get("WWW-Authenticate"),
        )

    def _token_request(
        self,
        data: dict[str, str],
        authorization: str | None,
        flow_id: str | None,
    ) -> TokenResponse:
        headers = {"Accept": "application/json"}
        if authorization is not None:
            headers["Authorization"] = authorization
        request = self.http_client.build_request(
            "POST", self.settings.token_url, data=data, headers=headers
        )

        try:
            response = self.http_client.send_logged(request, flow_id)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"Token request failed: {e}") from e

        try:
            response_data = response.json()
        except ValueError:
            response_data = {}
        if not isinstance(response_data, dict):
            response_data = {}

        if response.status_code != 200:
            return TokenResponse(
                access_token="",
                token_type="",
                error=response_data.get("error", "token_error"),
                error_description=response_data.get(
                    "error_description",
                    f"Token request failed with status {response.status_code}",
                ),
                raw_response=response_data,
            )

        return TokenResponse(
            access_token=response_data.get("access_token", ""),
            token_type=response_data.get("token_type", "bearer"),
            expires_in=response_data.get("expires_in"),
            refresh_token=response_data.get("refresh_token"),
            raw_response=response_data,
        )
