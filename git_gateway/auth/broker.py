"""Consent broker admin API client.

Talks to an Ory Hydra style broker: login and consent challenge handling,
and registration of the gateway's own OAuth client at startup.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

import httpx

from git_gateway.auth.providers import ProviderConfig
from git_gateway.errors import ProviderUnavailable

log = logging.getLogger("git-gateway.broker")

LOGIN_REQUEST_PATH = "/admin/oauth2/auth/requests/login"
CONSENT_REQUEST_PATH = "/admin/oauth2/auth/requests/consent"
CLIENTS_PATH = "/admin/clients"
READY_PATH = "/health/ready"


class RegistrationOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    SKIPPED = "skipped"


class BrokerAdminClient:
    """Thin async wrapper over the broker admin endpoints.

    Every failure (transport error, timeout or non-success status) raises
    ProviderUnavailable.
    """

    def __init__(self, admin_url: str, *, timeout: float = 8.0):
        self.admin_url = admin_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, str]] = None,
        json_body: Optional[dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Optional[dict[str, Any]]:
        url = f"{self.admin_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False
            ) as client:
                response = await client.request(
                    method, url, params=params, json=json_body
                )
        except httpx.HTTPError as e:
            log.warning(
                "broker request failed",
                extra={"method": method, "path": path, "error_type": type(e).__name__},
            )
            raise ProviderUnavailable("Consent broker is unavailable.")

        if allow_404 and response.status_code == 404:
            return None
        if not response.is_success:
            log.warning(
                "broker request rejected",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                },
            )
            raise ProviderUnavailable(
                f"Consent broker returned HTTP {response.status_code}."
            )
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            raise ProviderUnavailable("Consent broker returned a malformed response.")
        # Every admin endpoint answers with a JSON object
        if not isinstance(body, dict):
            log.warning(
                "broker returned non-object body",
                extra={"method": method, "path": path},
            )
            raise ProviderUnavailable("Consent broker returned a malformed response.")
        return body

    async def get_login_request(self, challenge: str) -> dict[str, Any]:
        return await self._request(
            "GET", LOGIN_REQUEST_PATH, params={"login_challenge": challenge}
        )

    async def accept_login(self, challenge: str, subject: str) -> str:
        body = await self._request(
            "PUT",
            f"{LOGIN_REQUEST_PATH}/accept",
            params={"login_challenge": challenge},
            json_body={"subject": subject, "remember": False},
        )
        return _redirect_to(body)

    async def get_consent_request(self, challenge: str) -> dict[str, Any]:
        return await self._request(
            "GET", CONSENT_REQUEST_PATH, params={"consent_challenge": challenge}
        )

    async def accept_consent(
        self, challenge: str, grant_scope: list[str], subject: str
    ) -> str:
        body = await self._request(
            "PUT",
            f"{CONSENT_REQUEST_PATH}/accept",
            params={"consent_challenge": challenge},
            json_body={
                "grant_scope": grant_scope,
                "remember": False,
                "session": {
                    "id_token": {"email": subject, "email_verified": True},
                    "access_token": {"email": subject},
                },
            },
        )
        return _redirect_to(body)

    async def reject_consent(self, challenge: str) -> str:
        body = await self._request(
            "PUT",
            f"{CONSENT_REQUEST_PATH}/reject",
            params={"consent_challenge": challenge},
            json_body={
                "error": "access_denied",
                "error_description": "User denied access",
            },
        )
        return _redirect_to(body)

    async def get_client(self, client_id: str) -> Optional[dict[str, Any]]:
        return await self._request(
            "GET", f"{CLIENTS_PATH}/{client_id}", allow_404=True
        )

    async def create_client(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", CLIENTS_PATH, json_body=payload)

    async def update_client(
        self, client_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request(
            "PUT", f"{CLIENTS_PATH}/{client_id}", json_body=payload
        )

    async def is_ready(self) -> bool:
        try:
            await self._request("GET", READY_PATH)
        except ProviderUnavailable:
            return False
        return True


def _redirect_to(body: Optional[dict[str, Any]]) -> str:
    target = (body or {}).get("redirect_to")
    if not target:
        raise ProviderUnavailable("Consent broker response is missing redirect_to.")
    return target


def client_registration_payload(provider: ProviderConfig) -> dict[str, Any]:
    return {
        "client_id": provider.client_id,
        "client_secret": provider.client_secret,
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "scope": provider.scope,
        "redirect_uris": provider.redirect_uris,
        "token_endpoint_auth_method": "client_secret_post",
    }


async def ensure_client_registered(
    admin: BrokerAdminClient, provider: ProviderConfig
) -> RegistrationOutcome:
    """Make sure the broker knows this gateway's client and redirect URIs.

    Never raises: a broker outage leaves the gateway running in degraded mode.
    """
    try:
        existing = await admin.get_client(provider.client_id)
        if existing is None:
            await admin.create_client(client_registration_payload(provider))
            log.info(
                "registered OAuth client with broker",
                extra={"client_id": provider.client_id},
            )
            return RegistrationOutcome.CREATED

        registered = set(existing.get("redirect_uris") or [])
        missing = [uri for uri in provider.redirect_uris if uri not in registered]
        if not missing:
            log.info(
                "OAuth client already registered",
                extra={"client_id": provider.client_id},
            )
            return RegistrationOutcome.UNCHANGED

        payload = client_registration_payload(provider)
        payload["redirect_uris"] = list(existing.get("redirect_uris") or []) + missing
        await admin.update_client(provider.client_id, payload)
        log.info(
            "updated OAuth client redirect URIs",
            extra={"client_id": provider.client_id, "added": missing},
        )
        return RegistrationOutcome.UPDATED
    except ProviderUnavailable as e:
        log.error(
            "OAuth client registration failed; continuing degraded",
            extra={"client_id": provider.client_id, "error": e.message},
        )
        return RegistrationOutcome.FAILED
