"""OAuth2 authorization-code flow for browser callers.

The controller works on an AuthSession and returns plain values or raises
GatewayError subclasses; routers/auth.py adapts it to HTTP.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from git_gateway.auth.mediator import AuthMediator
from git_gateway.auth.providers import ProviderConfig
from git_gateway.auth.session import AuthSession
from git_gateway.errors import (
    Forbidden,
    InvalidGrant,
    InvalidState,
    MissingAuthorizationCode,
    OAuthProviderError,
    ProviderUnavailable,
)

log = logging.getLogger("git-gateway.oauth")


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TokenGrant":
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise OAuthProviderError("Token response did not include an access token.")
        expires_in = data.get("expires_in")
        try:
            expires_in = int(expires_in) if expires_in is not None else None
        except (TypeError, ValueError):
            expires_in = None
        return cls(
            access_token=token,
            token_type=data.get("token_type") or "Bearer",
            expires_in=expires_in,
            scope=data.get("scope"),
            id_token=data.get("id_token"),
        )


def generate_state() -> str:
    return secrets.token_hex(32)


class OAuthFlowController:
    """Login, callback, logout and status for one provider."""

    def __init__(
        self,
        provider: ProviderConfig,
        mediator: AuthMediator,
        *,
        timeout: float = 8.0,
    ):
        self.provider = provider
        self.mediator = mediator
        self.timeout = timeout

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.provider.client_id,
            "redirect_uri": self.provider.redirect_uri,
            "response_type": "code",
            "scope": self.provider.scope,
            "state": state,
        }
        return f"{self.provider.auth_endpoint}?{urlencode(params)}"

    def begin_login(self, session: AuthSession) -> str:
        """Store a fresh CSRF state and return the provider redirect URL."""
        state = generate_state()
        session.csrf_state = state
        log.info("login started", extra={"provider": self.provider.kind.value})
        return self.authorization_url(state)

    async def exchange_code(self, code: str) -> TokenGrant:
        # Token endpoint expects a form-encoded body, not JSON
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.provider.redirect_uri,
            "client_id": self.provider.client_id,
            "client_secret": self.provider.client_secret,
        }
        try:
            # Never follow redirects with the client secret in the body
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False
            ) as client:
                response = await client.post(
                    self.provider.token_endpoint,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            log.warning(
                "token exchange failed",
                extra={"error_type": type(e).__name__},
            )
            raise ProviderUnavailable("Identity provider is unavailable.")

        if response.is_success:
            try:
                return TokenGrant.from_response(response.json())
            except ValueError:
                raise OAuthProviderError("Token endpoint returned a malformed response.")

        # Provider outage is distinct from a rejected grant
        if response.status_code >= 500:
            log.warning(
                "token endpoint error",
                extra={"status_code": response.status_code},
            )
            raise ProviderUnavailable("Identity provider is unavailable.")

        error, description = _parse_oauth_error(response)
        log.info(
            "token exchange rejected",
            extra={"status_code": response.status_code, "oauth_error": error},
        )
        # Replayed or expired code; surface the provider description as is
        if error == "invalid_grant":
            raise InvalidGrant(
                description or "Authorization code is invalid, expired or already used."
            )
        raise OAuthProviderError(description or error or "Token exchange failed.")

    async def complete_callback(
        self,
        session: AuthSession,
        *,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> TokenGrant:
        """Finish the flow started by begin_login.

        A failure at any step leaves a previously stored token untouched.
        """
        # Provider reported an error (e.g. user denied consent)
        if error:
            raise OAuthProviderError(error_description or error)
        if not code:
            raise MissingAuthorizationCode()

        # The pending state is single-use: consume it before any network call so
        # a replayed callback cannot reuse it.
        expected = session.consume_csrf_state()
        # Compare bytes; str compare_digest rejects non-ASCII input with TypeError.
        if (
            not expected
            or not state
            or not secrets.compare_digest(expected.encode(), state.encode())
        ):
            log.warning("OAuth state mismatch")
            raise InvalidState()

        grant = await self.exchange_code(code)
        # Fresh tokens are validated live before the session is opened
        if not await self.mediator.validate(grant.access_token):
            raise Forbidden(self.provider.allowed_email_domain)

        session.store_token(grant.access_token, grant.expires_in)
        log.info("login completed", extra={"provider": self.provider.kind.value})
        return grant

    def logout(self, session: AuthSession) -> None:
        session.destroy()

    async def status(self, session: Optional[AuthSession]) -> dict[str, Any]:
        token = session.current_token() if session else None
        if not token:
            return {"authenticated": False, "message": "Not authenticated"}
        # Re-validate on every status call; never cached
        if await self.mediator.validate(token):
            return {"authenticated": True, "message": "Authenticated"}
        session.destroy()
        return {
            "authenticated": False,
            "message": "Session token is no longer valid",
        }


def _parse_oauth_error(response: httpx.Response) -> tuple[Optional[str], Optional[str]]:
    try:
        body = response.json()
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    return body.get("error"), body.get("error_description")
