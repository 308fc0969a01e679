"""Structured request logging."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

log = logging.getLogger("git-gateway.access")

REDACTED = "[REDACTED]"

_SENSITIVE_MARKERS = (
    "authorization",
    "cookie",
    "token",
    "secret",
    "password",
    "api-key",
    "api_key",
)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def redact_headers(headers: Mapping[str, str]) -> dict[str, Any]:
    return {
        key: REDACTED if _is_sensitive_key(key) else value
        for key, value in headers.items()
    }


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        request_id = getattr(request.state, "request_id", None)

        if log.isEnabledFor(logging.DEBUG):
            log.debug(
                "request headers",
                extra={
                    "request_id": request_id,
                    "headers": redact_headers(request.headers),
                },
            )

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        log.info(
            "request",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "client_ip": request.client.host if request.client else None,
                "session_id": request.headers.get("mcp-session-id"),
            },
        )
        return response
