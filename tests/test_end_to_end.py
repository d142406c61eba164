"""Browser-level tests across the four services.

Each service runs in its own app, as in a real deployment. The browser
hops go through each app's test client; the Client's back-channel calls
reach the Authorization and Resource servers through httpx WSGI mounts.
"""

import base64
import html
import re
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
import pytest

from fedgate.core.saml.request import AuthnRequest
from fedgate.core.saml.utils import assertion_fingerprint

CLIENT_URL = "http://client.test"
REDIRECT_URI = f"{CLIENT_URL}/Client/OAuthRedirect"

_HIDDEN_RE = re.compile(r'<input type="hidden" name="([^"]+)" value="([^"]*)">')
_ACTION_RE = re.compile(r'<form[^>]*action="([^"]+)"')


def _hidden_fields(page: str) -> dict[str, str]:
    return {name: html.unescape(value) for name, value in _HIDDEN_RE.findall(page)}


def _form_action(page: str) -> str:
    match = _ACTION_RE.search(page)
    assert match, "page has no form"
    return html.unescape(match.group(1))


def _local(url: str) -> str:
    """Path and query of an absolute or relative URL."""
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


def _basic(client_id: str, secret: str) -> dict[str, str]:
    credentials = base64.b64encode(f"{client_id}:{secret}".encode()).decode("ascii")
    return {"Authorization": f"Basic {credentials}"}


@pytest.fixture
def deployment(make_app):
    """One app per service, with the Client wired to the others in-process."""
    idp = make_app(["idp"])
    authz = make_app(["authz"])
    resource = make_app(["resource"])
    client = make_app(
        ["client"],
        mounts={
            "http://authz.test": httpx.WSGITransport(app=authz),
            "http://resource.test": httpx.WSGITransport(app=resource),
        },
    )
    return {"idp": idp, "authz": authz, "resource": resource, "client": client}


@pytest.fixture
def browsers(deployment):
    return {name: app.test_client() for name, app in deployment.items()}


def _sign_in_at_idp(idp_browser, idp_url: str, password: str = "password"):
    login_page = idp_browser.get(_local(idp_url))
    assert login_page.status_code == 200
    fields = _hidden_fields(login_page.get_data(as_text=True))
    return idp_browser.post(
        "/SAML/AuthenticateUser",
        data={**fields, "username": "user", "password": password},
    )


def _grant(authz_browser, saml_token: str, query: str):
    """SAMLAuthorize then consent; returns the redirect to the client."""
    response = authz_browser.post(
        f"/OAuth/SAMLAuthorize?{query}", data={"samlToken": saml_token}
    )
    assert response.status_code == 302
    consent_url = _local(response.headers["Location"])

    consent = authz_browser.get(consent_url)
    assert consent.status_code == 200
    fields = _hidden_fields(consent.get_data(as_text=True))
    return authz_browser.post(consent_url, data={**fields, "submit.Grant": "Grant"})


def _authorize_query(state: str = "xyz") -> str:
    return urlencode({
        "redirect_uri": REDIRECT_URI,
        "state": state,
        "scope": "photos documents",
        "response_type": "code",
    })


class TestFullLogin:
    def test_resource_access_through_federation(self, browsers):
        client, idp, authz = browsers["client"], browsers["idp"], browsers["authz"]

        # 1. No token yet: the client sends the browser to the IdP
        response = client.get("/Client/GetResource")
        assert response.status_code == 302
        idp_url = response.headers["Location"]
        assert idp_url.startswith("http://idp.test/SAML/AuthnRequest?samlRequest=")

        # 2. The IdP authenticates the user and posts the assertion back
        response = _sign_in_at_idp(idp, idp_url)
        assert response.status_code == 200
        page = response.get_data(as_text=True)
        acs_action = _form_action(page)
        assert acs_action == f"{CLIENT_URL}/Client/AuthnResponse?username=federatedusername"
        saml_response = _hidden_fields(page)["samlResponse"]

        # 3. The client relays the assertion to the Authorization Server
        response = client.post(_local(acs_action), data={"samlResponse": saml_response})
        assert response.status_code == 200
        page = response.get_data(as_text=True)
        authorize_action = _form_action(page)
        assert authorize_action.startswith("http://authz.test/OAuth/SAMLAuthorize?")
        assert _hidden_fields(page)["samlToken"] == saml_response

        # 4. Sign-in from the assertion, then consent
        response = authz.post(
            _local(authorize_action), data={"samlToken": saml_response}
        )
        assert response.status_code == 302
        consent_url = _local(response.headers["Location"])
        assert "client_id=federatedusername" in consent_url

        consent = authz.get(consent_url)
        assert consent.status_code == 200
        consent_page = consent.get_data(as_text=True)
        assert "federatedusername" in consent_page
        assert "photos" in consent_page

        response = authz.post(
            consent_url,
            data={**_hidden_fields(consent_page), "submit.Grant": "Grant"},
        )
        assert response.status_code == 302
        code_redirect = response.headers["Location"]
        assert code_redirect.startswith(f"{REDIRECT_URI}?")
        query = parse_qs(urlsplit(code_redirect).query)
        assert query["code"][0]
        assert query["state"][0]

        # 5. The client redeems the code and stores the token in a cookie
        response = client.get(_local(code_redirect))
        assert response.status_code == 302
        [token_cookie] = [
            c for c in response.headers.getlist("Set-Cookie") if c.startswith("OAuthToken=")
        ]
        assert "HttpOnly" in token_cookie

        # 6. With the token the resource is reachable
        response = client.get("/Client/GetResource")
        assert response.status_code == 302
        assert _local(response.headers["Location"]) == "/Client/"

        page = client.get("/Client/").get_data(as_text=True)
        assert "User with following claims accessed the resource" in page
        assert "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/name federatedusername" in page
        assert "urn:oauth:scope photos" in page
        assert "urn:oauth:scope documents" in page
        assert "An access token is stored." in page

    def test_code_cannot_be_replayed(self, browsers):
        client, idp, authz = browsers["client"], browsers["idp"], browsers["authz"]

        idp_url = client.get("/Client/GetResource").headers["Location"]
        page = _sign_in_at_idp(idp, idp_url).get_data(as_text=True)
        saml_response = _hidden_fields(page)["samlResponse"]
        page = client.post(
            _local(_form_action(page)), data={"samlResponse": saml_response}
        ).get_data(as_text=True)
        query = urlsplit(_form_action(page)).query
        code_redirect = _grant(authz, saml_response, query).headers["Location"]

        assert client.get(_local(code_redirect)).status_code == 302
        replay = client.get(_local(code_redirect))
        assert replay.status_code == 500
        assert "invalid_transition" in replay.get_data(as_text=True)

    def test_wrong_password(self, browsers):
        idp_url = browsers["client"].get("/Client/GetResource").headers["Location"]

        response = _sign_in_at_idp(browsers["idp"], idp_url, password="wrong")

        assert response.status_code == 401
        page = response.get_data(as_text=True)
        assert "Invalid credentials" in page
        assert "samlResponse" not in page

    def test_stale_token_restarts_login(self, browsers):
        client = browsers["client"]
        client.set_cookie("OAuthToken", "stale-token")

        response = client.get("/Client/GetResource")

        assert response.status_code == 302
        assert response.headers["Location"].startswith("http://idp.test/SAML/AuthnRequest?")
        assert any(
            c.startswith("OAuthToken=;") for c in response.headers.getlist("Set-Cookie")
        )


class TestIdentityProvider:
    def test_malformed_request(self, browsers):
        response = browsers["idp"].get("/SAML/AuthnRequest?samlRequest=garbage")
        assert response.status_code == 400
        assert "malformed_request" in response.get_data(as_text=True)

    def test_untrusted_requester(self, browsers):
        request = AuthnRequest(
            issuer="http://evil.test", destination="http://idp.test", acs_url="http://evil.test/acs"
        )
        query = urlencode({"samlRequest": request.encode()})
        response = browsers["idp"].get(f"/SAML/AuthnRequest?{query}")
        assert response.status_code == 403
        assert "http://evil.test" in response.get_data(as_text=True)

    def test_missing_csrf_token(self, browsers):
        response = browsers["idp"].post(
            "/SAML/AuthenticateUser",
            data={"requester": CLIENT_URL, "username": "user", "password": "password"},
        )
        assert response.status_code == 400
        assert "samlResponse" not in response.get_data(as_text=True)


class TestAuthorizationServer:
    def test_rejects_bad_assertion(self, browsers):
        response = browsers["authz"].post(
            f"/OAuth/SAMLAuthorize?{_authorize_query()}", data={"samlToken": "garbage"}
        )
        assert response.status_code == 400
        assert "malformed_assertion" in response.get_data(as_text=True)

    def test_authorize_without_sign_in(self, browsers):
        response = browsers["authz"].get(
            f"/OAuth/Authorize?client_id=federatedusername&{_authorize_query()}"
        )
        assert response.status_code == 401
        assert "not_signed_in" in response.get_data(as_text=True)

    def test_unsupported_response_type(self, browsers):
        response = browsers["authz"].get(
            f"/OAuth/Authorize?client_id=federatedusername&redirect_uri={REDIRECT_URI}"
            "&response_type=token"
        )
        assert response.status_code == 400
        assert "unsupported_response_type" in response.get_data(as_text=True)

    def test_unregistered_redirect_uri(self, browsers, assertion_service):
        authz = browsers["authz"]
        signed = assertion_service.issue_assertion("user", True)
        query = urlencode({
            "redirect_uri": "http://evil.test/cb",
            "state": "xyz",
            "response_type": "code",
        })

        response = authz.post(f"/OAuth/SAMLAuthorize?{query}", data={"samlToken": signed.encoded})
        response = authz.get(_local(response.headers["Location"]))

        assert response.status_code == 401
        assert "unauthenticated_client" in response.get_data(as_text=True)

    def test_decline(self, browsers, assertion_service):
        authz = browsers["authz"]
        signed = assertion_service.issue_assertion("user", True)
        response = authz.post(
            f"/OAuth/SAMLAuthorize?{_authorize_query()}", data={"samlToken": signed.encoded}
        )
        consent_url = _local(response.headers["Location"])
        fields = _hidden_fields(authz.get(consent_url).get_data(as_text=True))

        response = authz.post(consent_url, data={**fields, "submit.Decline": "Decline"})

        assert response.status_code == 302
        assert response.headers["Location"] == CLIENT_URL
        # The sign-in is gone
        assert authz.get(consent_url).status_code == 401

    def test_token_and_refresh(self, browsers, assertion_service):
        authz = browsers["authz"]
        signed = assertion_service.issue_assertion("user", True)
        code_redirect = _grant(authz, signed.encoded, _authorize_query("s1")).headers["Location"]
        query = parse_qs(urlsplit(code_redirect).query)
        assert query["state"] == ["s1"]

        response = authz.post(
            "/OAuth/Token",
            data={
                "grant_type": "authorization_code",
                "code": query["code"][0],
                "redirect_uri": REDIRECT_URI,
                "client_id": "federatedusername",
            },
            headers=_basic("federatedusername", assertion_fingerprint(signed.encoded)),
        )
        assert response.status_code == 200
        assert response.headers["Cache-Control"] == "no-store"
        tokens = response.get_json()
        assert tokens["token_type"] == "bearer"
        assert tokens["expires_in"] == 1200

        refreshed = authz.post(
            "/OAuth/Token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"]},
        )
        assert refreshed.status_code == 200
        assert refreshed.get_json()["refresh_token"] == tokens["refresh_token"]

        resource = browsers["resource"].get(
            "/api/Resource",
            headers={"Authorization": f"Bearer {refreshed.get_json()['access_token']}"},
        )
        assert resource.status_code == 200
        assert resource.mimetype == "text/plain"
        assert "federatedusername" in resource.get_data(as_text=True)

    def test_token_wrong_secret(self, browsers, assertion_service):
        authz = browsers["authz"]
        signed = assertion_service.issue_assertion("user", True)
        code = parse_qs(
            urlsplit(_grant(authz, signed.encoded, _authorize_query()).headers["Location"]).query
        )["code"][0]

        response = authz.post(
            "/OAuth/Token",
            data={"grant_type": "authorization_code", "code": code, "redirect_uri": REDIRECT_URI},
            headers=_basic("federatedusername", "not-the-fingerprint"),
        )

        assert response.status_code == 401
        assert response.get_json()["error"] == "invalid_client"
        assert response.headers["WWW-Authenticate"] == 'Basic realm="fedgate"'

    def test_token_mismatched_client_ids(self, browsers):
        response = browsers["authz"].post(
            "/OAuth/Token",
            data={"grant_type": "authorization_code", "code": "c", "client_id": "othersubject"},
            headers=_basic("federatedusername", "secret"),
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_request"

    def test_unsupported_grant_type(self, browsers):
        response = browsers["authz"].post("/OAuth/Token", data={"grant_type": "password"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "unsupported_grant_type"

    def test_unknown_code(self, browsers, assertion_service):
        authz = browsers["authz"]
        signed = assertion_service.issue_assertion("user", True)
        # Registers the fingerprint as the client secret
        authz.post(f"/OAuth/SAMLAuthorize?{_authorize_query()}", data={"samlToken": signed.encoded})

        response = authz.post(
            "/OAuth/Token",
            data={"grant_type": "authorization_code", "code": "unknown", "redirect_uri": REDIRECT_URI},
            headers=_basic("federatedusername", assertion_fingerprint(signed.encoded)),
        )

        assert response.status_code == 400
        assert response.get_json()["error"] == "invalid_grant"


class TestResourceServer:
    def test_without_token(self, browsers):
        response = browsers["resource"].get("/api/Resource")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == 'Bearer realm="resource"'

    def test_invalid_token(self, browsers):
        response = browsers["resource"].get(
            "/api/Resource", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401
        assert 'error="invalid_token"' in response.headers["WWW-Authenticate"]
