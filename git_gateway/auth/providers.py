"""Identity provider resolution.

Builds one immutable ProviderConfig at startup from the deployment
configuration. Three provider kinds are supported:

* broker: an Ory Hydra style consent broker; the gateway also serves its
  login and consent UI and registers its own client through the admin API.
* direct: a hosted provider (Google endpoints by default).
* custom: any OAuth2 provider, every endpoint supplied explicitly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from git_gateway.auth.config import AuthConfig
from git_gateway.errors import ConfigurationError

log = logging.getLogger("git-gateway.providers")

CALLBACK_PATH = "/auth/callback"

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_JWKS_URL = "https://www.googleapis.com/oauth2/v3/certs"

BROKER_AUTH_PATH = "/oauth2/auth"
BROKER_TOKEN_PATH = "/oauth2/token"
BROKER_USERINFO_PATH = "/userinfo"
BROKER_JWKS_PATH = "/.well-known/jwks.json"


class ProviderKind(str, Enum):
    BROKER = "broker"
    DIRECT = "direct"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: str) -> "ProviderKind":
        key = (value or "").strip().lower()
        key = {"hydra": "broker", "google": "direct"}.get(key, key)
        try:
            return cls(key)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ConfigurationError(
                f"Unknown GW_OAUTH_PROVIDER='{value}'. Valid values: {valid}."
            )


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved identity provider settings.

    ``auth_endpoint`` is the browser-facing authorization URL. Token and
    userinfo endpoints are called server to server.
    """

    kind: ProviderKind
    auth_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    client_id: str
    client_secret: str
    scopes: tuple[str, ...]
    allowed_email_domain: str
    redirect_uri: str
    jwks_endpoint: Optional[str] = None
    admin_endpoint: Optional[str] = None
    secondary_redirect_uri: Optional[str] = None
    public_base_url: Optional[str] = None

    def __post_init__(self) -> None:
        required = {
            "auth_endpoint": self.auth_endpoint,
            "token_endpoint": self.token_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "allowed_email_domain": self.allowed_email_domain,
            "redirect_uri": self.redirect_uri,
        }
        if self.kind is not ProviderKind.DIRECT:
            required["jwks_endpoint"] = self.jwks_endpoint or ""
        if self.kind is ProviderKind.BROKER:
            required["admin_endpoint"] = self.admin_endpoint or ""
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ConfigurationError(
                f"{self.kind.value} provider is missing: {', '.join(missing)}"
            )

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @property
    def redirect_uris(self) -> list[str]:
        uris = [self.redirect_uri]
        if self.secondary_redirect_uri and self.secondary_redirect_uri not in uris:
            uris.append(self.secondary_redirect_uri)
        return uris

    def email_allowed(self, email: Optional[str]) -> bool:
        return bool(email) and email.endswith(self.allowed_email_domain)

    def advertised_endpoints(self) -> dict[str, Optional[str]]:
        """Endpoints as seen by browsers and remote clients."""
        if self.kind is ProviderKind.BROKER and self.public_base_url:
            base = self.public_base_url
            return {
                "issuer": base,
                "authorization_endpoint": f"{base}{BROKER_AUTH_PATH}",
                "token_endpoint": f"{base}{BROKER_TOKEN_PATH}",
                "userinfo_endpoint": f"{base}{BROKER_USERINFO_PATH}",
                "jwks_uri": f"{base}{BROKER_JWKS_PATH}",
            }
        return {
            "issuer": _origin(self.auth_endpoint),
            "authorization_endpoint": self.auth_endpoint,
            "token_endpoint": self.token_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
            "jwks_uri": self.jwks_endpoint,
        }


def _origin(url: str) -> str:
    scheme, _, rest = url.partition("://")
    return f"{scheme}://{rest.split('/', 1)[0]}"


def _broker(config: AuthConfig, common: dict) -> ProviderConfig:
    public = (config.broker_browser_url or config.broker_internal_url).rstrip("/")
    internal = config.broker_internal_url.rstrip("/")
    return ProviderConfig(
        kind=ProviderKind.BROKER,
        auth_endpoint=f"{public}{BROKER_AUTH_PATH}",
        token_endpoint=f"{internal}{BROKER_TOKEN_PATH}",
        userinfo_endpoint=f"{internal}{BROKER_USERINFO_PATH}",
        jwks_endpoint=f"{internal}{BROKER_JWKS_PATH}",
        admin_endpoint=config.broker_admin_url.rstrip("/"),
        **common,
    )


def _direct(config: AuthConfig, common: dict) -> ProviderConfig:
    return ProviderConfig(
        kind=ProviderKind.DIRECT,
        auth_endpoint=config.auth_url or GOOGLE_AUTH_URL,
        token_endpoint=config.token_url or GOOGLE_TOKEN_URL,
        userinfo_endpoint=config.userinfo_url or GOOGLE_USERINFO_URL,
        jwks_endpoint=config.jwks_url or GOOGLE_JWKS_URL,
        **common,
    )


def _custom(config: AuthConfig, common: dict) -> ProviderConfig:
    missing = [
        name
        for name, value in (
            ("GW_OAUTH_AUTH_URL", config.auth_url),
            ("GW_OAUTH_TOKEN_URL", config.token_url),
            ("GW_OAUTH_USERINFO_URL", config.userinfo_url),
            ("GW_OAUTH_JWKS_URL", config.jwks_url),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Custom OAuth provider requires: {', '.join(missing)}"
        )
    return ProviderConfig(
        kind=ProviderKind.CUSTOM,
        auth_endpoint=config.auth_url,
        token_endpoint=config.token_url,
        userinfo_endpoint=config.userinfo_url,
        jwks_endpoint=config.jwks_url,
        **common,
    )


_BUILDERS = {
    ProviderKind.BROKER: _broker,
    ProviderKind.DIRECT: _direct,
    ProviderKind.CUSTOM: _custom,
}


def resolve_provider(config: AuthConfig) -> ProviderConfig:
    """Resolve the provider for this deployment.

    Raises:
        ConfigurationError: unknown kind or a required setting is missing.
    """
    kind = ProviderKind.parse(config.provider)
    common = {
        "client_id": config.client_id or "",
        "client_secret": config.client_secret or "",
        "scopes": tuple(config.scopes),
        "allowed_email_domain": config.allowed_email_domain or "",
        "redirect_uri": f"{config.effective_base_url}{CALLBACK_PATH}",
        "secondary_redirect_uri": config.redirect_uri2,
        "public_base_url": config.base_url.rstrip("/") if config.base_url else None,
    }
    provider = _BUILDERS[kind](config, common)
    log.info(
        "OAuth provider resolved",
        extra={
            "provider": provider.kind.value,
            "auth_endpoint": provider.auth_endpoint,
            "redirect_uri": provider.redirect_uri,
            "allowed_email_domain": provider.allowed_email_domain,
        },
    )
    return provider
