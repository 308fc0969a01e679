"""Registry of live protocol sessions.

Maps caller-supplied session ids to their transport. At most one live
transport exists per id: concurrent creators race on a check-and-set and the
losers close what they built.

Overlapping requests on one session are admitted and counted. They are never
serialized or rejected.
"""

from __future__ import annotations

import inspect
import logging
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from git_gateway.errors import SessionNotFound
from git_gateway.protocol.transport import ProtocolTransport

log = logging.getLogger("git-gateway.registry")

TransportFactory = Callable[
    [str], Union[ProtocolTransport, Awaitable[ProtocolTransport]]
]


@dataclass
class ProtocolSession:
    session_id: str
    transport: ProtocolTransport
    active_request_count: int = 0
    created_at: float = field(default_factory=time.time)


class SessionRegistry:
    def __init__(self, transport_factory: TransportFactory):
        self._factory = transport_factory
        self._sessions: dict[str, ProtocolSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def get(self, session_id: Optional[str]) -> Optional[ProtocolSession]:
        if not session_id:
            return None
        with self._lock:
            return self._sessions.get(session_id)

    def require(self, session_id: Optional[str]) -> ProtocolSession:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    async def _build(self, session_id: str) -> ProtocolTransport:
        transport = self._factory(session_id)
        if inspect.isawaitable(transport):
            transport = await transport
        return transport

    async def get_or_create(self, session_id: str) -> ProtocolSession:
        existing = self.get(session_id)
        if existing is not None:
            return existing

        transport = await self._build(session_id)
        candidate = ProtocolSession(session_id=session_id, transport=transport)
        with self._lock:
            winner = self._sessions.setdefault(session_id, candidate)

        if winner is not candidate:
            await transport.close()
            return winner

        log.info("protocol session created", extra={"session_id": session_id})
        return candidate

    async def terminate(self, session_id: Optional[str]) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None) if session_id else None
        if session is None:
            raise SessionNotFound(session_id)
        await session.transport.close()
        log.info(
            "protocol session terminated",
            extra={
                "session_id": session_id,
                "active_requests": session.active_request_count,
            },
        )

    @asynccontextmanager
    async def track(self, session: ProtocolSession) -> AsyncIterator[ProtocolSession]:
        with self._lock:
            session.active_request_count += 1
            active = session.active_request_count
        if active > 1:
            log.warning(
                "overlapping requests on protocol session",
                extra={"session_id": session.session_id, "active_requests": active},
            )
        try:
            yield session
        finally:
            with self._lock:
                session.active_request_count -= 1

    async def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            try:
                await session.transport.close()
            except Exception:
                log.exception(
                    "failed to close protocol session",
                    extra={"session_id": session.session_id},
                )
        if sessions:
            log.info("closed protocol sessions", extra={"count": len(sessions)})
