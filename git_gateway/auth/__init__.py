"""Authentication: provider resolution, token mediation and OAuth flows."""

from git_gateway.auth.config import AuthConfig, GatewayMode, get_auth_config
from git_gateway.auth.mediator import AuthMediator, AuthOutcome, AuthResult, AuthSource
from git_gateway.auth.providers import ProviderConfig, ProviderKind, resolve_provider
from git_gateway.auth.session import AuthSession

__all__ = [
    "AuthConfig",
    "AuthMediator",
    "AuthOutcome",
    "AuthResult",
    "AuthSession",
    "AuthSource",
    "GatewayMode",
    "ProviderConfig",
    "ProviderKind",
    "get_auth_config",
    "resolve_provider",
]
