"""Tests for the Client's outbound calls to the Token endpoint."""

import httpx
import pytest

from fedgate.core.config import ClientSettings
from fedgate.core.flows.gateway import FederationGateway
from fedgate.core.logging import ProtocolLogger


def _gateway(handler) -> FederationGateway:
    settings = ClientSettings(
        base_url="http://client.test",
        token_url="http://authz.test/OAuth/Token",
        resource_url="http://resource.test/api/Resource",
    )
    return FederationGateway(
        settings,
        protocol_logger=ProtocolLogger(),
        mounts={"http://authz.test": httpx.MockTransport(handler)},
    )


def test_redeem_code_uses_basic_auth():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["authorization"] = request.headers["Authorization"]
        return httpx.Response(
            200, json={"access_token": "access", "token_type": "bearer", "expires_in": 1200}
        )

    gateway = _gateway(handler)
    token = gateway.redeem_code("the-code", "federatedusername", "fingerprint")
    gateway.close()

    assert token.is_success
    assert token.access_token == "access"
    assert seen["authorization"].startswith("Basic ")


@pytest.mark.parametrize("status", [200, 400])
def test_non_object_json_body(status):
    gateway = _gateway(lambda request: httpx.Response(status, json=["not", "an", "object"]))

    token = gateway.redeem_code("the-code", "federatedusername", "fingerprint")
    gateway.close()

    assert not token.is_success
    assert token.raw_response == {}
    if status == 400:
        assert token.error == "token_error"
