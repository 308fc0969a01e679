"""Authentication router.

Browser login, callback, logout and status for stateful deployments.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from git_gateway.auth.oauth import OAuthFlowController
from git_gateway.auth.providers import ProviderConfig, ProviderKind
from git_gateway.auth.session import AuthSession
from git_gateway.dependencies import (
    get_auth_session,
    get_oauth,
    get_optional_auth_session,
    get_provider,
)
from git_gateway.errors import OAuthProviderError

log = logging.getLogger("git-gateway.auth-router")

router = APIRouter(prefix="/auth", tags=["auth"])


class ClientRegistrationRequest(BaseModel):
    client_name: Optional[str] = Field(default=None, description="Client display name")
    redirect_uris: list[str] = Field(default_factory=list)


@router.get("/login")
async def login(
    session: AuthSession = Depends(get_auth_session),
    oauth: OAuthFlowController = Depends(get_oauth),
) -> RedirectResponse:
    """Start the authorization-code flow."""
    return RedirectResponse(url=oauth.begin_login(session), status_code=302)


@router.get("/callback")
async def callback(
    code: Optional[str] = Query(None, description="Authorization code"),
    state: Optional[str] = Query(None, description="State parameter"),
    error: Optional[str] = Query(None, description="Error code"),
    error_description: Optional[str] = Query(None, description="Error description"),
    session: AuthSession = Depends(get_auth_session),
    oauth: OAuthFlowController = Depends(get_oauth),
) -> dict[str, Any]:
    """Exchange the authorization code and open the session."""
    # Log provider errors here; the controller maps them to a 400
    if error:
        log.warning("OAuth provider error: %s - %s", error, error_description)
    await oauth.complete_callback(
        session,
        code=code,
        state=state,
        error=error,
        error_description=error_description,
    )
    return {
        "success": True,
        "message": "Authentication successful. You can now use the protocol endpoint.",
        "protocol_endpoint": "/protocol",
    }


async def _logout(
    session: AuthSession, oauth: OAuthFlowController
) -> dict[str, Any]:
    # Destroys the whole cookie session, including the protocol session id
    oauth.logout(session)
    log.info("session logged out")
    return {"success": True, "message": "Logged out"}


@router.get("/logout")
async def logout(
    session: AuthSession = Depends(get_auth_session),
    oauth: OAuthFlowController = Depends(get_oauth),
) -> dict[str, Any]:
    return await _logout(session, oauth)


@router.post("/logout")
async def logout_post(
    session: AuthSession = Depends(get_auth_session),
    oauth: OAuthFlowController = Depends(get_oauth),
) -> dict[str, Any]:
    return await _logout(session, oauth)


@router.get("/status")
async def status(
    session: Optional[AuthSession] = Depends(get_optional_auth_session),
    oauth: OAuthFlowController = Depends(get_oauth),
) -> dict[str, Any]:
    """Report whether the caller's session holds a currently valid token."""
    return await oauth.status(session)


@router.post("/register")
async def register(
    request: Request,
    body: Optional[ClientRegistrationRequest] = None,
    provider: ProviderConfig = Depends(get_provider),
) -> dict[str, Any]:
    """Dynamic client registration stub.

    The broker client is registered by the gateway at startup, so remote
    clients receive that registration instead of a new one.
    """
    # Only broker deployments register clients
    if provider.kind is not ProviderKind.BROKER:
        raise OAuthProviderError(
            "Dynamic client registration is only available with a broker provider."
        )
    log.info(
        "client registration requested",
        extra={
            "client_name": body.client_name if body else None,
            "requested_redirect_uris": body.redirect_uris if body else [],
        },
    )
    # Unauthenticated endpoint: the client secret is never part of the reply
    return {
        "client_id": provider.client_id,
        "client_id_issued_at": int(request.app.state.start_time.timestamp()),
        "redirect_uris": provider.redirect_uris,
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "scope": provider.scope,
        "token_endpoint_auth_method": "client_secret_post",
    }
