"""Tests for the authentication mediator."""

import time

import httpx
import pytest
from starlette.requests import Request

from git_gateway.auth.config import GatewayMode
from git_gateway.auth.mediator import AuthMediator, AuthOutcome, AuthSource
from git_gateway.auth.providers import resolve_provider
from git_gateway.tests.support import IDP, rpc


def _request(headers=None, session=None) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/protocol",
        "headers": [
            (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
        ],
    }
    if session is not None:
        scope["session"] = session
    return Request(scope)


@pytest.fixture
def mediator(make_config):
    provider = resolve_provider(make_config())
    return AuthMediator(provider, accept_session_cookie=True, timeout=1.0)


class TestValidate:
    @pytest.mark.asyncio
    async def test_allowed_domain(self, mediator, http_mock):
        assert await mediator.validate("tok-alice") is True

    @pytest.mark.asyncio
    async def test_other_domain_rejected(self, mediator, http_mock):
        assert await mediator.validate("tok-mallory") is False

    @pytest.mark.asyncio
    async def test_suffix_match_is_case_sensitive(self, mediator, http_mock, users):
        users["tok-shouty"] = "carol@EXAMPLE.COM"
        assert await mediator.validate("tok-shouty") is False

    @pytest.mark.asyncio
    async def test_unknown_token_rejected(self, mediator, http_mock):
        assert await mediator.validate("tok-nobody") is False

    @pytest.mark.asyncio
    async def test_timeout_fails_closed(self, mediator, http_mock):
        http_mock.get(f"{IDP}/userinfo").mock(side_effect=httpx.ConnectTimeout("slow"))
        assert await mediator.validate("tok-alice") is False

    @pytest.mark.asyncio
    async def test_server_error_fails_closed(self, mediator, http_mock):
        http_mock.get(f"{IDP}/userinfo").mock(return_value=httpx.Response(502))
        assert await mediator.validate("tok-alice") is False

    @pytest.mark.asyncio
    async def test_missing_email_claim(self, mediator, http_mock):
        http_mock.get(f"{IDP}/userinfo").mock(
            return_value=httpx.Response(200, json={"sub": "123"})
        )
        assert await mediator.validate("tok-alice") is False

    @pytest.mark.asyncio
    async def test_non_json_body(self, mediator, http_mock):
        http_mock.get(f"{IDP}/userinfo").mock(
            return_value=httpx.Response(200, text="<html>login</html>")
        )
        assert await mediator.validate("tok-alice") is False

    @pytest.mark.asyncio
    async def test_redirects_are_not_followed(self, mediator, http_mock):
        route = http_mock.get("http://elsewhere.test/userinfo")
        http_mock.get(f"{IDP}/userinfo").mock(
            return_value=httpx.Response(
                302, headers={"Location": "http://elsewhere.test/userinfo"}
            )
        )
        assert await mediator.validate("tok-alice") is False
        assert route.call_count == 0


class TestResolveToken:
    def test_bearer_takes_precedence_over_session(self, mediator):
        request = _request(
            {"Authorization": "Bearer tok-bob"}, session={"access_token": "tok-alice"}
        )
        assert mediator.resolve_token(request) == (AuthSource.BEARER, "tok-bob")

    def test_bearer_scheme_case_insensitive(self, mediator):
        request = _request({"Authorization": "bearer tok-bob"})
        assert mediator.resolve_token(request) == (AuthSource.BEARER, "tok-bob")

    def test_session_cookie_token(self, mediator):
        request = _request(session={"access_token": "tok-alice"})
        assert mediator.resolve_token(request) == (
            AuthSource.SESSION_COOKIE,
            "tok-alice",
        )

    def test_expired_session_token_ignored_and_cleared(self, mediator):
        session = {"access_token": "tok-alice", "expires_at": int(time.time()) - 5}
        request = _request(session=session)

        assert mediator.resolve_token(request) == (AuthSource.NONE, None)
        assert "access_token" not in session

    def test_session_ignored_when_bearer_only(self, make_config):
        provider = resolve_provider(make_config())
        bearer_only = AuthMediator(provider, accept_session_cookie=False)
        request = _request(session={"access_token": "tok-alice"})

        assert bearer_only.resolve_token(request) == (AuthSource.NONE, None)

    def test_non_bearer_scheme_ignored(self, mediator):
        request = _request({"Authorization": "Basic dXNlcjpwYXNz"})
        assert mediator.resolve_token(request) == (AuthSource.NONE, None)


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_granted_attaches_token(self, mediator, http_mock):
        request = _request({"Authorization": "Bearer tok-alice"})

        result = await mediator.authenticate(request)

        assert result.outcome is AuthOutcome.GRANTED
        assert result.token == "tok-alice"
        assert request.state.access_token == "tok-alice"
        assert request.state.auth_source is AuthSource.BEARER

    @pytest.mark.asyncio
    async def test_no_token_is_unauthenticated(self, mediator):
        result = await mediator.authenticate(_request(session={}))
        assert result.outcome is AuthOutcome.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_wrong_domain_is_forbidden(self, mediator, http_mock):
        result = await mediator.authenticate(
            _request({"Authorization": "Bearer tok-mallory"})
        )
        assert result.outcome is AuthOutcome.FORBIDDEN

    @pytest.mark.asyncio
    async def test_invalid_session_token_cleared(self, mediator, http_mock):
        session = {"access_token": "tok-revoked"}

        result = await mediator.authenticate(_request(session=session))

        assert result.outcome is AuthOutcome.FORBIDDEN
        assert result.source is AuthSource.SESSION_COOKIE
        assert "access_token" not in session


class TestProtocolGate:
    def test_missing_token_returns_401_with_hint(self, bearer_client):
        response = bearer_client.post("/protocol", json=rpc("ping"))

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"].startswith("Bearer")
        body = response.json()
        assert body["jsonrpc"] == "2.0"
        assert body["error"]["code"] == -32001
        assert "Authorization: Bearer" in body["error"]["message"]

    def test_allowed_bearer_granted(self, bearer_client):
        response = bearer_client.post(
            "/protocol",
            json=rpc("ping"),
            headers={"Authorization": "Bearer tok-alice"},
        )
        assert response.status_code == 200
        assert response.json()["result"] == {}

    def test_other_domain_forbidden(self, bearer_client):
        response = bearer_client.post(
            "/protocol",
            json=rpc("ping"),
            headers={"Authorization": "Bearer tok-mallory"},
        )

        assert response.status_code == 403
        error = response.json()["error"]
        assert error["code"] == -32002
        assert "@example.com" in error["message"]

    def test_login_hint_in_stateful_mode(self, session_client):
        response = session_client.post("/protocol", json=rpc("ping"))

        assert response.status_code == 401
        assert response.json()["error"]["data"]["login_url"] == "/auth/login"

    def test_stream_and_terminate_are_gated(self, bearer_client):
        assert bearer_client.get("/protocol").status_code == 401
        assert bearer_client.delete("/protocol").status_code == 401

    def test_bearer_only_mode_sets_no_cookie(self, bearer_client):
        response = bearer_client.post(
            "/protocol",
            json=rpc("ping"),
            headers={"Authorization": "Bearer tok-alice"},
        )
        assert "set-cookie" not in response.headers


def test_stateless_mode_uses_bearer_only(make_config):
    from git_gateway.main import build_app

    app = build_app(make_config(GatewayMode.STATELESS_BEARER))
    assert app.state.mediator.accept_session_cookie is False
