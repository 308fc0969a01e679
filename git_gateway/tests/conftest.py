"""Test fixtures for git-gateway."""

from __future__ import annotations

import os

import httpx
import pytest
import respx
from fastapi.testclient import TestClient

from git_gateway.auth.config import AuthConfig, GatewayMode, reset_auth_config
from git_gateway.tests.support import (
    ALLOWED_DOMAIN,
    BROKER,
    BROKER_ADMIN,
    CLIENT_ID,
    CLIENT_SECRET,
    IDP,
    USERS,
    FakeTokenEndpoint,
    userinfo_responder,
)


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Start every test from a clean GW_* environment."""
    for key in list(os.environ):
        if key.startswith("GW_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GW_ENV", "test")
    reset_auth_config()
    yield
    reset_auth_config()


@pytest.fixture
def repo_dir(tmp_path):
    root = tmp_path / "repo"
    (root / "docs").mkdir(parents=True)
    (root / "src").mkdir()
    (root / "node_modules" / "pkg").mkdir(parents=True)
    (root / "README.md").write_text("# Demo\nThis repository explains the gateway.\n")
    (root / "docs" / "gateway.md").write_text(
        "Gateway notes\nThe gateway talks to the broker.\ngateway again\n"
    )
    (root / "src" / "app.py").write_text("def main():\n    return 'gateway'\n")
    (root / "node_modules" / "pkg" / "gateway.js").write_text("gateway gateway\n")
    return root


@pytest.fixture
def make_config(repo_dir):
    """Return a factory for AuthConfig with test defaults."""

    def _factory(mode: GatewayMode = GatewayMode.STATEFUL_SESSION, **overrides):
        values = dict(
            mode=mode,
            env="test",
            provider="custom",
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            allowed_email_domain=ALLOWED_DOMAIN,
            auth_url=f"{IDP}/authorize",
            token_url=f"{IDP}/token",
            userinfo_url=f"{IDP}/userinfo",
            jwks_url=f"{IDP}/jwks",
            broker_admin_url=BROKER_ADMIN,
            broker_internal_url=BROKER,
            session_secret="test-session-secret",
            session_secret_explicit=True,
            repo_path=str(repo_dir),
        )
        values.update(overrides)
        return AuthConfig(**values)

    return _factory


@pytest.fixture
def users():
    """Token to email table behind the mocked userinfo endpoints."""
    return dict(USERS)


@pytest.fixture
def http_mock(users):
    """Mock all outbound HTTP; unmatched requests fail the test."""
    with respx.mock(assert_all_called=False) as mock:
        mock.get(f"{IDP}/userinfo").mock(side_effect=userinfo_responder(users))
        mock.get(f"{BROKER}/userinfo").mock(side_effect=userinfo_responder(users))
        yield mock


@pytest.fixture
def token_endpoint(http_mock):
    endpoint = FakeTokenEndpoint({"code-1": "tok-alice", "code-evil": "tok-mallory"})
    http_mock.post(f"{IDP}/token").mock(side_effect=endpoint)
    return endpoint


@pytest.fixture
def make_client(make_config, http_mock):
    """Return a factory building a started TestClient for a given mode."""
    from git_gateway.main import build_app

    clients = []

    def _factory(mode: GatewayMode = GatewayMode.STATEFUL_SESSION, **overrides):
        app = build_app(make_config(mode, **overrides))
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _factory

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    """No-auth gateway."""
    return make_client(GatewayMode.NO_AUTH)


@pytest.fixture
def bearer_client(make_client):
    return make_client(GatewayMode.STATELESS_BEARER)


@pytest.fixture
def session_client(make_client):
    """Stateful gateway with a custom (non-broker) provider."""
    return make_client(GatewayMode.STATEFUL_SESSION)


@pytest.fixture
def broker_registered(http_mock):
    """Broker admin API reporting the gateway client as already registered."""
    route = http_mock.get(f"{BROKER_ADMIN}/admin/clients/{CLIENT_ID}").mock(
        return_value=httpx.Response(
            200,
            json={
                "client_id": CLIENT_ID,
                "redirect_uris": ["http://localhost:3131/auth/callback"],
            },
        )
    )
    return route


@pytest.fixture
def broker_client(make_client, broker_registered):
    """Stateful gateway with a consent broker provider."""
    return make_client(GatewayMode.STATEFUL_SESSION, provider="broker")
