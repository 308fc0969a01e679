"""Gateway configuration.

Reads deployment settings from environment variables once at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from functools import lru_cache
from typing import Optional

from git_gateway.errors import ConfigurationError


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_str(name: str) -> Optional[str]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v.strip()


class GatewayMode(str, Enum):
    NO_AUTH = "no-auth"
    STATELESS_BEARER = "stateless-bearer"
    STATEFUL_SESSION = "stateful-session"

    @classmethod
    def parse(cls, value: str) -> "GatewayMode":
        key = (value or "").strip().lower()
        key = _MODE_ALIASES.get(key, key)
        return cls(key)


_MODE_ALIASES = {
    "simple": GatewayMode.NO_AUTH.value,
    "simple-auth": GatewayMode.STATELESS_BEARER.value,
    "standard": GatewayMode.STATEFUL_SESSION.value,
}


@dataclass(frozen=True)
class AuthConfig:
    """Gateway configuration from environment variables.

    Environment Variables:
        GW_MODE: no-auth | stateless-bearer | stateful-session (default: stateful-session)
        GW_ENV: Environment (prod/staging/dev/test)
        GW_OAUTH_PROVIDER: broker | direct | custom (aliases: hydra, google)
        GW_OAUTH_CLIENT_ID / GW_OAUTH_CLIENT_SECRET: Relying-party credentials
        GW_OAUTH_SCOPES: Space separated scopes (default: "openid profile email")
        GW_ALLOWED_EMAIL_DOMAIN: Required email suffix, e.g. "@example.com"
        GW_BASE_URL: Public base URL when running behind a reverse proxy
        GW_INTERNAL_URL: Process-internal base URL (default: http://localhost:3131)
        GW_BROKER_ADMIN_URL: Consent broker admin API (default: http://localhost:4445)
        GW_BROKER_BROWSER_URL / GW_BROKER_PUBLIC_URL / GW_BROKER_INTERNAL_URL:
            Consent broker public API, first one set wins
        GW_OAUTH_AUTH_URL / GW_OAUTH_TOKEN_URL / GW_OAUTH_USERINFO_URL / GW_OAUTH_JWKS_URL:
            Explicit provider endpoints (required for custom providers)
        GW_REDIRECT_URI2: Secondary redirect URI registered with the broker
        GW_SESSION_SECRET: Secret for signing session cookies
        GW_SESSION_TTL_SECONDS: Session cookie TTL (default: 28800 = 8 hours)
        GW_HTTP_TIMEOUT_SECONDS: Outbound provider/broker timeout (default: 8)
        GW_STREAM_HISTORY: Replay buffer size per protocol session (default: 256)
        GW_REPO_PATH: Repository root served by the search/fetch tools
    """

    mode: GatewayMode = GatewayMode.STATEFUL_SESSION
    env: str = "dev"

    provider: str = "broker"
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    scopes: tuple[str, ...] = ("openid", "profile", "email")
    allowed_email_domain: Optional[str] = None

    base_url: Optional[str] = None
    internal_url: str = "http://localhost:3131"

    broker_admin_url: str = "http://localhost:4445"
    broker_browser_url: Optional[str] = None
    broker_internal_url: str = "http://localhost:4444"

    auth_url: Optional[str] = None
    token_url: Optional[str] = None
    userinfo_url: Optional[str] = None
    jwks_url: Optional[str] = None

    redirect_uri2: Optional[str] = None

    session_secret: str = field(default_factory=lambda: os.urandom(32).hex())
    session_secret_explicit: bool = False
    session_cookie_name: str = "gw_session"
    session_ttl_seconds: int = 28800

    http_timeout_seconds: float = 8.0
    stream_history: int = 256
    repo_path: str = "."

    @property
    def env_lower(self) -> str:
        return (self.env or "dev").strip().lower()

    @property
    def is_prod(self) -> bool:
        return self.env_lower in ("prod", "production")

    @property
    def auth_enabled(self) -> bool:
        return self.mode is not GatewayMode.NO_AUTH

    @property
    def uses_session_cookie(self) -> bool:
        return self.mode is GatewayMode.STATEFUL_SESSION

    @property
    def effective_base_url(self) -> str:
        return (self.base_url or self.internal_url).rstrip("/")

    def validate(self) -> list[str]:
        errors: list[str] = []

        valid_envs = {
            "prod",
            "production",
            "staging",
            "dev",
            "development",
            "local",
            "test",
        }
        if self.env_lower not in valid_envs:
            errors.append(
                f"Invalid GW_ENV='{self.env}'. Valid values: {', '.join(sorted(valid_envs))}."
            )

        if not self.auth_enabled:
            return errors

        missing: list[str] = []
        if not self.client_id:
            missing.append("GW_OAUTH_CLIENT_ID")
        if not self.client_secret:
            missing.append("GW_OAUTH_CLIENT_SECRET")
        if not self.allowed_email_domain:
            missing.append("GW_ALLOWED_EMAIL_DOMAIN")
        if missing:
            errors.append(f"Authentication enabled but missing: {', '.join(missing)}")

        if self.uses_session_cookie and self.is_prod and not self.session_secret_explicit:
            errors.append("GW_SESSION_SECRET must be set in production")

        if self.http_timeout_seconds <= 0:
            errors.append("GW_HTTP_TIMEOUT_SECONDS must be positive")
        if self.stream_history < 1:
            errors.append("GW_STREAM_HISTORY must be at least 1")

        return errors


def _parse_mode(raw: str) -> GatewayMode:
    try:
        return GatewayMode.parse(raw)
    except ValueError:
        valid = ", ".join(m.value for m in GatewayMode)
        raise ConfigurationError(f"Invalid GW_MODE='{raw}'. Valid values: {valid}.")


@lru_cache(maxsize=1)
def get_auth_config() -> AuthConfig:
    session_secret = _env_str("GW_SESSION_SECRET")
    scopes_raw = os.getenv("GW_OAUTH_SCOPES", "openid profile email")
    extra: dict = {}
    if session_secret:
        extra["session_secret"] = session_secret
    return AuthConfig(
        mode=_parse_mode(os.getenv("GW_MODE", GatewayMode.STATEFUL_SESSION.value)),
        env=os.getenv("GW_ENV", "dev"),
        provider=os.getenv("GW_OAUTH_PROVIDER", "broker"),
        client_id=_env_str("GW_OAUTH_CLIENT_ID"),
        client_secret=_env_str("GW_OAUTH_CLIENT_SECRET"),
        scopes=tuple(s for s in scopes_raw.split() if s),
        allowed_email_domain=_env_str("GW_ALLOWED_EMAIL_DOMAIN"),
        base_url=_env_str("GW_BASE_URL"),
        internal_url=os.getenv("GW_INTERNAL_URL", "http://localhost:3131"),
        broker_admin_url=os.getenv("GW_BROKER_ADMIN_URL", "http://localhost:4445"),
        broker_browser_url=_env_str("GW_BROKER_BROWSER_URL")
        or _env_str("GW_BROKER_PUBLIC_URL"),
        broker_internal_url=os.getenv(
            "GW_BROKER_INTERNAL_URL", "http://localhost:4444"
        ),
        auth_url=_env_str("GW_OAUTH_AUTH_URL"),
        token_url=_env_str("GW_OAUTH_TOKEN_URL"),
        userinfo_url=_env_str("GW_OAUTH_USERINFO_URL"),
        jwks_url=_env_str("GW_OAUTH_JWKS_URL"),
        redirect_uri2=_env_str("GW_REDIRECT_URI2"),
        session_secret_explicit=bool(session_secret),
        session_cookie_name=os.getenv("GW_SESSION_COOKIE_NAME", "gw_session"),
        session_ttl_seconds=_env_int("GW_SESSION_TTL_SECONDS", 28800),
        http_timeout_seconds=_env_float("GW_HTTP_TIMEOUT_SECONDS", 8.0),
        stream_history=_env_int("GW_STREAM_HISTORY", 256),
        repo_path=os.getenv("GW_REPO_PATH", "."),
        **extra,
    )


def reset_auth_config() -> None:
    get_auth_config.cache_clear()


def cors_origins_from_env(is_prod: bool) -> list[str]:
    raw = os.getenv("GW_CORS_ORIGINS", "")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    if is_prod and "*" in origins:
        raise ConfigurationError("Wildcard CORS origin (*) is not allowed in production")
    return origins


__all__ = [
    "AuthConfig",
    "GatewayMode",
    "get_auth_config",
    "reset_auth_config",
    "cors_origins_from_env",
]
