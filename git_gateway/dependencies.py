"""FastAPI dependencies.

Components are built once by build_app and stored on ``app.state``; these
providers hand them to route handlers.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from git_gateway.auth.broker import BrokerAdminClient
from git_gateway.auth.config import AuthConfig
from git_gateway.auth.csrf import FormCSRF
from git_gateway.auth.mediator import AuthMediator, AuthOutcome, AuthResult
from git_gateway.auth.oauth import OAuthFlowController
from git_gateway.auth.providers import ProviderConfig
from git_gateway.auth.session import AuthSession
from git_gateway.errors import Forbidden, InternalError, Unauthenticated
from git_gateway.protocol.registry import SessionRegistry


def get_config(request: Request) -> AuthConfig:
    return request.app.state.config


def get_provider(request: Request) -> ProviderConfig:
    provider = request.app.state.provider
    if provider is None:
        raise InternalError("Authentication is not configured.")
    return provider


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


def get_oauth(request: Request) -> OAuthFlowController:
    return request.app.state.oauth


def get_broker(request: Request) -> BrokerAdminClient:
    return request.app.state.broker


def get_form_csrf(request: Request) -> FormCSRF:
    return request.app.state.form_csrf


def get_auth_session(request: Request) -> AuthSession:
    session = AuthSession.from_request(request)
    if session is None:
        raise InternalError("Session middleware is not installed.")
    return session


def get_optional_auth_session(request: Request) -> Optional[AuthSession]:
    return AuthSession.from_request(request)


async def require_protocol_auth(request: Request) -> Optional[AuthResult]:
    """Gate the protocol endpoint. No-op when authentication is disabled."""
    mediator: Optional[AuthMediator] = request.app.state.mediator
    if mediator is None:
        return None

    result = await mediator.authenticate(request)
    if result.outcome is AuthOutcome.UNAUTHENTICATED:
        login_url = mediator.login_url
        if login_url:
            message = (
                "Supply an Authorization: Bearer <token> header "
                f"or log in via {login_url}"
            )
        else:
            message = "Supply an Authorization: Bearer <token> header."
        raise Unauthenticated(message, login_url=login_url)
    if result.outcome is AuthOutcome.FORBIDDEN:
        raise Forbidden(mediator.provider.allowed_email_domain)
    return result
