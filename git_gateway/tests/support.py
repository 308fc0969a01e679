"""Shared test constants and fake provider endpoints."""

from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx

ALLOWED_DOMAIN = "@example.com"
CLIENT_ID = "gw-client"
CLIENT_SECRET = "gw-client-secret-value"

IDP = "http://idp.test"
BROKER = "http://broker.test"
BROKER_ADMIN = "http://broker-admin.test"

# token -> email returned by the userinfo endpoint
USERS = {
    "tok-alice": "alice@example.com",
    "tok-bob": "bob@example.com",
    "tok-mallory": "mallory@other.com",
}


def userinfo_responder(users: dict[str, str]):
    """respx side effect answering userinfo lookups from a token table."""

    def _respond(request: httpx.Request) -> httpx.Response:
        header = request.headers.get("authorization", "")
        email = users.get(header.removeprefix("Bearer "))
        if email is None:
            return httpx.Response(401, json={"error": "invalid_token"})
        return httpx.Response(200, json={"email": email, "email_verified": True})

    return _respond


class FakeTokenEndpoint:
    """Authorization codes are single use, like a real provider."""

    def __init__(self, codes: dict[str, str]):
        self.codes = dict(codes)
        self.used: set[str] = set()
        self.requests: list[dict[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        self.requests.append(form)
        code = form.get("code")
        if form.get("client_secret") != CLIENT_SECRET:
            return httpx.Response(401, json={"error": "invalid_client"})
        if code not in self.codes or code in self.used:
            return httpx.Response(
                400,
                json={
                    "error": "invalid_grant",
                    "error_description": "The authorization code has already been used.",
                },
            )
        self.used.add(code)
        return httpx.Response(
            200,
            json={
                "access_token": self.codes[code],
                "token_type": "Bearer",
                "expires_in": 3600,
            },
        )


def rpc(method: str, params: Optional[dict] = None, request_id: int = 1) -> dict:
    message = {"jsonrpc": "2.0", "method": method, "id": request_id}
    if params is not None:
        message["params"] = params
    return message


def state_from_redirect(location: str) -> str:
    return parse_qs(urlparse(location).query)["state"][0]
