"""Git Gateway - FastAPI Application.

Composes the gateway for the configured mode:

* no-auth: protocol endpoint only.
* stateless-bearer: protocol endpoint gated by bearer tokens, plus the
  authorization server metadata document.
* stateful-session: cookie sessions with the browser OAuth flow, bearer
  tokens still accepted; broker login/consent pages when the provider is a
  consent broker.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from git_gateway import SERVICE_NAME, VERSION
from git_gateway.auth.broker import (
    BrokerAdminClient,
    RegistrationOutcome,
    ensure_client_registered,
)
from git_gateway.auth.config import (
    AuthConfig,
    GatewayMode,
    cors_origins_from_env,
    get_auth_config,
)
from git_gateway.auth.csrf import FormCSRF
from git_gateway.auth.mediator import AuthMediator
from git_gateway.auth.oauth import OAuthFlowController
from git_gateway.auth.providers import ProviderKind, resolve_provider
from git_gateway.errors import ConfigurationError, install_handlers
from git_gateway.middleware.logging import StructuredLoggingMiddleware
from git_gateway.middleware.request_id import RequestIdMiddleware
from git_gateway.protocol.registry import SessionRegistry
from git_gateway.protocol.transport import ProtocolTransport
from git_gateway.repository import FilesystemRepository, RepositoryCapability
from git_gateway.routers import (
    auth_router,
    broker_router,
    metadata_router,
    protocol_router,
)

log = logging.getLogger(SERVICE_NAME)


def build_app(
    config: Optional[AuthConfig] = None,
    repository: Optional[RepositoryCapability] = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Raises:
        ConfigurationError: the deployment configuration is invalid.
    """
    config = config or get_auth_config()

    # Fail fast on invalid configuration
    config_errors = config.validate()
    if config_errors:
        error_msg = "; ".join(config_errors)
        log.error("Configuration validation failed: %s", error_msg)
        raise ConfigurationError(f"Configuration validation failed: {error_msg}")

    # Provider is resolved once; no runtime mutation after startup
    provider = resolve_provider(config) if config.auth_enabled else None
    repository = repository or FilesystemRepository(config.repo_path)

    def transport_factory(session_id: str) -> ProtocolTransport:
        return ProtocolTransport(
            session_id, repository, history_size=config.stream_history
        )

    registry = SessionRegistry(transport_factory)

    # Components are only built for the modes that use them

    mediator: Optional[AuthMediator] = None
    oauth: Optional[OAuthFlowController] = None
    broker: Optional[BrokerAdminClient] = None
    if provider is not None:
        mediator = AuthMediator(
            provider,
            accept_session_cookie=config.uses_session_cookie,
            timeout=config.http_timeout_seconds,
            public_base_url=config.base_url.rstrip("/") if config.base_url else None,
        )
    if provider is not None and config.uses_session_cookie:
        oauth = OAuthFlowController(
            provider, mediator, timeout=config.http_timeout_seconds
        )
        if provider.kind is ProviderKind.BROKER:
            broker = BrokerAdminClient(
                provider.admin_endpoint, timeout=config.http_timeout_seconds
            )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log.info(
            "Starting %s v%s",
            SERVICE_NAME,
            VERSION,
            extra={
                "service": SERVICE_NAME,
                "version": VERSION,
                "mode": config.mode.value,
                "provider": provider.kind.value if provider else None,
            },
        )
        # Registration failure leaves the gateway up in degraded mode
        if broker is not None:
            app.state.broker_registration = await ensure_client_registered(
                broker, provider
            )

        yield

        # Close every live transport before exit
        await registry.close_all()
        log.info("Shutting down %s", SERVICE_NAME)

    app = FastAPI(
        title="Git Gateway",
        description="Repository search and fetch tools behind OAuth2 identity providers",
        version=VERSION,
        lifespan=lifespan,
    )
    install_handlers(app)

    # Add middleware (order matters: last added is outermost)
    if config.uses_session_cookie:
        app.add_middleware(
            SessionMiddleware,
            secret_key=config.session_secret,
            session_cookie=config.session_cookie_name,
            max_age=config.session_ttl_seconds,
            # lax: the provider redirects back cross-site with the state cookie
            same_site="lax",
            https_only=config.is_prod,
        )
    app.add_middleware(StructuredLoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # CORS only when origins are configured explicitly
    cors_origins = cors_origins_from_env(config.is_prod)
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=[
                "Authorization",
                "Content-Type",
                "Last-Event-ID",
                "Mcp-Session-Id",
                "X-Request-Id",
            ],
            expose_headers=["Mcp-Session-Id", "X-Request-Id"],
        )

    # Set app metadata
    app.state.service = SERVICE_NAME
    app.state.version = VERSION
    app.state.instance_id = str(uuid.uuid4())
    app.state.start_time = datetime.now(timezone.utc)
    app.state.config = config
    app.state.provider = provider
    app.state.repository = repository
    app.state.registry = registry
    app.state.mediator = mediator
    app.state.oauth = oauth
    app.state.broker = broker
    app.state.broker_registration = RegistrationOutcome.SKIPPED
    if broker is not None:
        app.state.form_csrf = FormCSRF(
            config.session_secret, secure_cookie=config.is_prod
        )

    # Include routers for the composed mode
    app.include_router(protocol_router)
    if provider is not None:
        app.include_router(metadata_router)
    if oauth is not None:
        app.include_router(auth_router)
    if broker is not None:
        app.include_router(broker_router)

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        """Health check endpoint."""
        state = request.app.state
        return {
            "status": "ok",
            "service": state.service,
            "version": state.version,
            "mode": config.mode.value,
            "oauth": {
                "enabled": provider is not None,
                "provider": provider.kind.value if provider else None,
                "allowed_email_domain": (
                    provider.allowed_email_domain if provider else None
                ),
                "broker_registration": state.broker_registration.value,
            },
            "sessions": len(state.registry),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "request_id": getattr(request.state, "request_id", None),
        }

    @app.get("/version")
    async def version(request: Request) -> dict[str, Any]:
        """Version information endpoint."""
        return {
            "service": request.app.state.service,
            "version": request.app.state.version,
            "build_commit": os.getenv("GW_BUILD_COMMIT"),
            "build_time": os.getenv("GW_BUILD_TIME"),
        }

    log.info(
        "gateway composed",
        extra={"mode": config.mode.value, "routes": len(app.routes)},
    )
    if config.mode is GatewayMode.NO_AUTH:
        log.warning("Authentication disabled; the protocol endpoint is open")
    return app
