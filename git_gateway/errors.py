"""Gateway error taxonomy.

Every per-request failure is raised as a GatewayError subclass and converted
to a structured response by the handlers registered in ``install_handlers``.
Responses on the protocol endpoint use JSON-RPC error envelopes; everything
else gets a flat ``{"error", "message"}`` body.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

log = logging.getLogger("git-gateway.errors")

PROTOCOL_PATH = "/protocol"

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_RPC_ERROR = -32603
SERVER_ERROR = -32000
AUTH_REQUIRED = -32001
NOT_AUTHORIZED = -32002
SESSION_UNKNOWN = -32003


class GatewayError(Exception):
    """Base class for errors surfaced to callers."""

    status_code = 500
    error = "internal_error"
    rpc_code = SERVER_ERROR

    def __init__(self, message: str, *, data: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.data = data or {}

    def headers(self) -> dict[str, str]:
        return {}

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error, "message": self.message}
        payload.update(self.data)
        return payload

    def to_rpc_payload(self, request_id: Any = None) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.rpc_code, "message": self.message}
        if self.data:
            error["data"] = self.data
        return {"jsonrpc": "2.0", "error": error, "id": request_id}


class ConfigurationError(GatewayError, RuntimeError):
    """Invalid or incomplete startup configuration. Fatal."""

    error = "configuration_error"


class Unauthenticated(GatewayError):
    status_code = 401
    error = "authentication_required"
    rpc_code = AUTH_REQUIRED

    def __init__(self, message: str, *, login_url: Optional[str] = None):
        data = {"login_url": login_url} if login_url else None
        super().__init__(message, data=data)

    def headers(self) -> dict[str, str]:
        return {"WWW-Authenticate": 'Bearer realm="git-gateway"'}


class Forbidden(GatewayError):
    status_code = 403
    error = "forbidden"
    rpc_code = NOT_AUTHORIZED

    def __init__(self, allowed_domain: str):
        super().__init__(
            f"Only users with {allowed_domain} email addresses are allowed.",
            data={"allowed_domain": allowed_domain},
        )


class InvalidState(GatewayError):
    status_code = 400
    error = "invalid_state"

    def __init__(self, message: str = "Invalid or expired login state."):
        super().__init__(message)


class InvalidGrant(GatewayError):
    status_code = 400
    error = "invalid_grant"


class MissingAuthorizationCode(GatewayError):
    status_code = 400
    error = "missing_code"

    def __init__(self, message: str = "No authorization code received."):
        super().__init__(message)


class OAuthProviderError(GatewayError):
    status_code = 400
    error = "provider_error"


class ProviderUnavailable(GatewayError):
    status_code = 503
    error = "provider_unavailable"


class SessionNotFound(GatewayError):
    status_code = 404
    error = "session_not_found"
    rpc_code = SESSION_UNKNOWN

    def __init__(self, session_id: Optional[str]):
        if session_id:
            message = f"Unknown protocol session: {session_id}"
        else:
            message = "Missing Mcp-Session-Id header."
        super().__init__(message)
        self.session_id = session_id


class InternalError(GatewayError):
    status_code = 500
    error = "internal_error"
    rpc_code = INTERNAL_RPC_ERROR

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)


def error_response(request: Request, exc: GatewayError) -> JSONResponse:
    if request.url.path.startswith(PROTOCOL_PATH):
        content = exc.to_rpc_payload()
    else:
        content = exc.to_payload()
    return JSONResponse(
        status_code=exc.status_code, content=content, headers=exc.headers()
    )


async def _gateway_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, GatewayError)
    log.info(
        "gateway error",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
            "error": exc.error,
            "status_code": exc.status_code,
        },
    )
    return error_response(request, exc)


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception(
        "unhandled error",
        extra={
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
        },
    )
    return error_response(request, InternalError())


def install_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
