"""OAuth authorization server metadata for remote clients."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from git_gateway.auth.config import AuthConfig
from git_gateway.auth.providers import ProviderConfig, ProviderKind
from git_gateway.dependencies import get_config, get_provider

router = APIRouter(tags=["metadata"])


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(
    config: AuthConfig = Depends(get_config),
    provider: ProviderConfig = Depends(get_provider),
) -> dict[str, Any]:
    base = config.effective_base_url
    document: dict[str, Any] = dict(provider.advertised_endpoints())
    document.update(
        {
            "scopes_supported": list(provider.scopes),
            "response_types_supported": ["code"],
            "grant_types_supported": ["authorization_code"],
            "token_endpoint_auth_methods_supported": [
                "client_secret_basic",
                "client_secret_post",
            ],
            "registration_endpoint": (
                f"{base}/auth/register"
                if config.uses_session_cookie and provider.kind is ProviderKind.BROKER
                else None
            ),
        }
    )
    if config.uses_session_cookie:
        document["gateway_endpoints"] = {
            "login": f"{base}/auth/login",
            "callback": provider.redirect_uri,
            "logout": f"{base}/auth/logout",
            "status": f"{base}/auth/status",
            "protocol": f"{base}/protocol",
        }
    return document
