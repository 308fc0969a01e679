"""Tests for the browser OAuth flow (login, callback, logout, status)."""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from git_gateway.auth.oauth import OAuthFlowController, TokenGrant
from git_gateway.auth.mediator import AuthMediator
from git_gateway.auth.providers import resolve_provider
from git_gateway.auth.session import AuthSession
from git_gateway.errors import InvalidGrant, OAuthProviderError
from git_gateway.tests.support import (
    CLIENT_ID,
    CLIENT_SECRET,
    IDP,
    rpc,
    state_from_redirect,
)


def _login(client) -> str:
    response = client.get("/auth/login", follow_redirects=False)
    assert response.status_code == 302
    return state_from_redirect(response.headers["location"])


def _status(client) -> bool:
    response = client.get("/auth/status")
    assert response.status_code == 200
    return response.json()["authenticated"]


class TestLogin:
    def test_redirects_to_provider(self, session_client):
        response = session_client.get("/auth/login", follow_redirects=False)

        assert response.status_code == 302
        location = urlparse(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == f"{IDP}/authorize"
        query = parse_qs(location.query)
        assert query["client_id"] == [CLIENT_ID]
        assert query["redirect_uri"] == ["http://localhost:3131/auth/callback"]
        assert query["response_type"] == ["code"]
        assert query["scope"] == ["openid profile email"]
        assert len(query["state"][0]) == 64

    def test_states_are_distinct(self, make_config):
        provider = resolve_provider(make_config())
        controller = OAuthFlowController(
            provider, AuthMediator(provider, accept_session_cookie=True)
        )

        states = set()
        for _ in range(50):
            data = {}
            controller.begin_login(AuthSession(data))
            states.add(data["oauth_state"])
        assert len(states) == 50


class TestCallback:
    def test_success_then_status_authenticated(self, session_client, token_endpoint):
        state = _login(session_client)

        response = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": state}
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert _status(session_client) is True
        sent = token_endpoint.requests[0]
        assert sent["grant_type"] == "authorization_code"
        assert sent["redirect_uri"] == "http://localhost:3131/auth/callback"
        assert sent["client_id"] == CLIENT_ID

    def test_state_mismatch_rejected(self, session_client, token_endpoint):
        _login(session_client)

        response = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": "B" * 64}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state"
        assert token_endpoint.requests == []
        assert _status(session_client) is False

    def test_non_ascii_state_rejected(self, session_client, token_endpoint):
        _login(session_client)

        response = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": "é" * 64}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state"
        assert token_endpoint.requests == []

    def test_callback_without_login_rejected(self, session_client, token_endpoint):
        response = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": "anything"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_state"

    def test_missing_code(self, session_client):
        state = _login(session_client)

        response = session_client.get("/auth/callback", params={"state": state})

        assert response.status_code == 400
        assert response.json()["error"] == "missing_code"

    def test_provider_error_surfaced(self, session_client):
        _login(session_client)

        response = session_client.get(
            "/auth/callback",
            params={"error": "access_denied", "error_description": "User denied access"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "provider_error"
        assert body["message"] == "User denied access"

    def test_code_replay_is_invalid_grant_and_keeps_session(
        self, session_client, token_endpoint
    ):
        state = _login(session_client)
        first = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": state}
        )
        assert first.status_code == 200

        state = _login(session_client)
        replay = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": state}
        )

        assert replay.status_code == 400
        body = replay.json()
        assert body["error"] == "invalid_grant"
        assert body["message"] == "The authorization code has already been used."
        assert _status(session_client) is True

    def test_immediate_replay_keeps_session(self, session_client, token_endpoint):
        state = _login(session_client)
        params = {"code": "code-1", "state": state}
        assert session_client.get("/auth/callback", params=params).status_code == 200

        replay = session_client.get("/auth/callback", params=params)

        assert replay.status_code == 400
        assert _status(session_client) is True

    def test_other_domain_forbidden(self, session_client, token_endpoint):
        state = _login(session_client)

        response = session_client.get(
            "/auth/callback", params={"code": "code-evil", "state": state}
        )

        assert response.status_code == 403
        assert "@example.com" in response.json()["message"]
        assert _status(session_client) is False

    def test_provider_outage_fails_closed(self, session_client, http_mock):
        http_mock.post(f"{IDP}/token").mock(side_effect=httpx.ConnectTimeout("down"))
        state = _login(session_client)

        response = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": state}
        )

        assert response.status_code == 503
        assert response.json()["error"] == "provider_unavailable"
        assert _status(session_client) is False

    def test_client_secret_never_echoed(self, session_client, http_mock):
        http_mock.post(f"{IDP}/token").mock(
            return_value=httpx.Response(401, json={"error": "invalid_client"})
        )
        state = _login(session_client)

        response = session_client.get(
            "/auth/callback", params={"code": "code-1", "state": state}
        )

        assert response.status_code == 400
        assert CLIENT_SECRET not in response.text


class TestSessionLifecycle:
    def _authenticate(self, client):
        state = _login(client)
        response = client.get("/auth/callback", params={"code": "code-1", "state": state})
        assert response.status_code == 200

    def test_logout_destroys_session(self, session_client, token_endpoint):
        self._authenticate(session_client)

        response = session_client.get("/auth/logout")

        assert response.status_code == 200
        assert _status(session_client) is False

    def test_post_logout(self, session_client, token_endpoint):
        self._authenticate(session_client)
        assert session_client.post("/auth/logout").status_code == 200
        assert _status(session_client) is False

    def test_status_detects_revocation(self, session_client, token_endpoint, users):
        self._authenticate(session_client)
        del users["tok-alice"]

        response = session_client.get("/auth/status")
        assert response.json()["authenticated"] is False

        users["tok-alice"] = "alice@example.com"
        assert _status(session_client) is False

    def test_session_cookie_grants_protocol_access(self, session_client, token_endpoint):
        self._authenticate(session_client)

        response = session_client.post("/protocol", json=rpc("ping"))

        assert response.status_code == 200
        assert response.json()["result"] == {}

    def test_protocol_session_remembered_in_cookie(self, session_client, token_endpoint):
        self._authenticate(session_client)

        first = session_client.post("/protocol", json=rpc("initialize"))
        session_id = first.headers["Mcp-Session-Id"]
        second = session_client.post("/protocol", json=rpc("ping"))

        assert second.headers["Mcp-Session-Id"] == session_id


class TestController:
    @pytest.mark.asyncio
    async def test_failed_callback_does_not_clear_token(self, make_config, http_mock):
        http_mock.post(f"{IDP}/token").mock(
            return_value=httpx.Response(400, json={"error": "invalid_grant"})
        )
        provider = resolve_provider(make_config())
        controller = OAuthFlowController(
            provider, AuthMediator(provider, accept_session_cookie=True)
        )
        session = AuthSession({"access_token": "tok-alice"})
        controller.begin_login(session)
        state = session.csrf_state

        with pytest.raises(InvalidGrant):
            await controller.complete_callback(session, code="stale", state=state)

        assert session.access_token == "tok-alice"
        assert session.csrf_state is None

    def test_token_response_without_access_token(self):
        with pytest.raises(OAuthProviderError):
            TokenGrant.from_response({"token_type": "Bearer"})

    def test_token_response_parsed(self):
        grant = TokenGrant.from_response(
            {"access_token": "abc", "expires_in": "120", "scope": "openid"}
        )
        assert grant.access_token == "abc"
        assert grant.expires_in == 120
        assert grant.token_type == "Bearer"
