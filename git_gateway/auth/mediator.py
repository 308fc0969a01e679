"""Authentication mediator.

Decides whether an inbound request may reach the protocol endpoint. A token
is trusted only after a live userinfo lookup confirms the caller's email is
in the allowed domain. Nothing is cached between requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
from fastapi import Request

from git_gateway.auth.providers import ProviderConfig
from git_gateway.auth.session import AuthSession

log = logging.getLogger("git-gateway.mediator")

LOGIN_PATH = "/auth/login"


class AuthSource(str, Enum):
    BEARER = "bearer"
    SESSION_COOKIE = "session_cookie"
    NONE = "none"


class AuthOutcome(str, Enum):
    GRANTED = "granted"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class AuthResult:
    outcome: AuthOutcome
    source: AuthSource
    token: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.outcome is AuthOutcome.GRANTED


def extract_bearer(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class AuthMediator:
    """Validates tokens against the provider's userinfo endpoint."""

    def __init__(
        self,
        provider: ProviderConfig,
        *,
        accept_session_cookie: bool,
        timeout: float = 8.0,
        public_base_url: Optional[str] = None,
    ):
        self.provider = provider
        self.accept_session_cookie = accept_session_cookie
        self.timeout = timeout
        self._public_base_url = public_base_url

    @property
    def login_url(self) -> Optional[str]:
        if not self.accept_session_cookie:
            return None
        if self._public_base_url:
            return f"{self._public_base_url}{LOGIN_PATH}"
        return LOGIN_PATH

    async def fetch_email(self, token: str) -> Optional[str]:
        """Look up the token's email. Returns None on any failure."""
        try:
            # Provider endpoints must not redirect token-bearing requests
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False
            ) as client:
                response = await client.get(
                    self.provider.userinfo_endpoint,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            log.warning(
                "userinfo request failed",
                extra={"error_type": type(e).__name__},
            )
            return None

        if not response.is_success:
            log.info(
                "userinfo rejected token",
                extra={"status_code": response.status_code},
            )
            return None

        try:
            info = response.json()
        except ValueError:
            log.warning("userinfo returned non-JSON body")
            return None
        email = info.get("email") if isinstance(info, dict) else None
        return email if isinstance(email, str) else None

    async def validate(self, token: str) -> bool:
        # Fail closed: any lookup failure yields no email and a denial
        email = await self.fetch_email(token)
        if not self.provider.email_allowed(email):
            if email:
                log.info("email outside allowed domain", extra={"email": email})
            return False
        return True

    def resolve_token(self, request: Request) -> tuple[AuthSource, Optional[str]]:
        # Bearer header wins over the cookie session
        token = extract_bearer(request)
        if token:
            return AuthSource.BEARER, token
        if self.accept_session_cookie:
            session = AuthSession.from_request(request)
            stored = session.current_token() if session else None
            if stored:
                return AuthSource.SESSION_COOKIE, stored
        return AuthSource.NONE, None

    async def authenticate(self, request: Request) -> AuthResult:
        source, token = self.resolve_token(request)
        if token is None:
            return AuthResult(AuthOutcome.UNAUTHENTICATED, source)

        if not await self.validate(token):
            # Drop a stale session token so the next request starts clean
            if source is AuthSource.SESSION_COOKIE:
                session = AuthSession.from_request(request)
                if session is not None:
                    session.clear_token()
            return AuthResult(AuthOutcome.FORBIDDEN, source)

        # Expose the caller identity to downstream handlers
        request.state.access_token = token
        request.state.auth_source = source
        return AuthResult(AuthOutcome.GRANTED, source, token)
