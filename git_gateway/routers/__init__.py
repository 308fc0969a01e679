"""Git Gateway API Routers."""

from git_gateway.routers.auth import router as auth_router
from git_gateway.routers.broker import router as broker_router
from git_gateway.routers.metadata import router as metadata_router
from git_gateway.routers.protocol import router as protocol_router

__all__ = ["auth_router", "broker_router", "metadata_router", "protocol_router"]
