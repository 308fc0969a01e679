"""Protocol endpoint.

POST carries JSON-RPC messages, GET opens the server-push event stream for an
existing session, DELETE terminates a session. Sessions are correlated by
the ``Mcp-Session-Id`` header; stateful deployments also remember the id in
the caller's cookie session.
"""

from __future__ import annotations

import logging
import secrets
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from git_gateway.auth.session import AuthSession
from git_gateway.dependencies import get_registry, require_protocol_auth
from git_gateway.errors import PARSE_ERROR, SessionNotFound
from git_gateway.protocol.registry import SessionRegistry
from git_gateway.protocol.rpc import rpc_error
from git_gateway.protocol.transport import StreamSubscription, TransportClosed

log = logging.getLogger("git-gateway.protocol")

SESSION_HEADER = "Mcp-Session-Id"
LAST_EVENT_ID_HEADER = "Last-Event-ID"
KEEPALIVE_SECONDS = 15.0

router = APIRouter(
    prefix="/protocol",
    tags=["protocol"],
    dependencies=[Depends(require_protocol_auth)],
)


def resolve_session_id(request: Request, *, create: bool) -> Optional[str]:
    session_id = request.headers.get(SESSION_HEADER)
    if session_id:
        return session_id
    auth_session = AuthSession.from_request(request)
    if auth_session is not None and auth_session.protocol_session_id:
        return auth_session.protocol_session_id
    return secrets.token_hex(16) if create else None


async def event_stream(
    request: Request,
    subscription: StreamSubscription,
    keepalive: float = KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Yield SSE frames until the client disconnects or the transport closes."""
    try:
        while not await request.is_disconnected():
            event = await subscription.get(timeout=keepalive)
            if event is None:
                if subscription.is_closed():
                    break
                yield ": keepalive\n\n"
                continue
            yield event.encode()
    finally:
        subscription.close()


@router.post("")
async def protocol_message(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> Response:
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(
            status_code=400, content=rpc_error(None, PARSE_ERROR, "Parse error")
        )

    session_id = resolve_session_id(request, create=True)
    session = await registry.get_or_create(session_id)
    try:
        async with registry.track(session):
            result = await session.transport.handle_message(payload)
    except TransportClosed:
        raise SessionNotFound(session_id)

    auth_session = AuthSession.from_request(request)
    if auth_session is not None:
        auth_session.protocol_session_id = session_id

    headers = {SESSION_HEADER: session_id}
    if result is None:
        return Response(status_code=202, headers=headers)
    return JSONResponse(content=result, headers=headers)


@router.get("")
async def protocol_stream(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> StreamingResponse:
    session_id = resolve_session_id(request, create=False)
    session = registry.require(session_id)
    try:
        subscription = session.transport.subscribe(
            request.headers.get(LAST_EVENT_ID_HEADER)
        )
    except TransportClosed:
        raise SessionNotFound(session_id)

    return StreamingResponse(
        event_stream(request, subscription),
        media_type="text/event-stream",
        headers={
            SESSION_HEADER: session_id,
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.delete("")
async def protocol_terminate(
    request: Request,
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    session_id = resolve_session_id(request, create=False)
    await registry.terminate(session_id)

    auth_session = AuthSession.from_request(request)
    if auth_session is not None and auth_session.protocol_session_id == session_id:
        auth_session.protocol_session_id = None

    return {"terminated": True, "session_id": session_id}
