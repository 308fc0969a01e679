"""Per-session protocol transport.

Handles request/response messages and keeps a bounded, replayable history of
server-pushed events. Stream subscribers each get their own asyncio.Queue;
a reconnecting client passes the last event id it saw and receives every
later event still held in the history.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Any, Optional

from git_gateway.protocol.rpc import RpcDispatcher
from git_gateway.repository import RepositoryCapability

log = logging.getLogger("git-gateway.transport")


class TransportClosed(Exception):
    pass


@dataclass(frozen=True)
class StreamEvent:
    event_id: str
    data: dict[str, Any]

    def encode(self) -> str:
        return f"id: {self.event_id}\nevent: message\ndata: {json.dumps(self.data)}\n\n"


class StreamSubscription:
    """One connected stream reader."""

    def __init__(self, transport: "ProtocolTransport", backlog: list[StreamEvent]):
        self._transport = transport
        self._queue: asyncio.Queue = asyncio.Queue()
        for event in backlog:
            self._queue.put_nowait(event)
        self._closed = threading.Event()

    def is_closed(self) -> bool:
        return self._closed.is_set()

    def put(self, event: Optional[StreamEvent]) -> None:
        if not self.is_closed():
            self._queue.put_nowait(event)

    async def get(self, timeout: float = 15.0) -> Optional[StreamEvent]:
        """Next event, or None on timeout or once the transport closes."""
        try:
            event = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        if event is None:
            self._closed.set()
        return event

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._transport._unsubscribe(self)


class ProtocolTransport:
    def __init__(
        self,
        session_id: str,
        repository: RepositoryCapability,
        *,
        history_size: int = 256,
    ):
        self.session_id = session_id
        self.dispatcher = RpcDispatcher(repository, publish=self.publish)
        self._history: deque[StreamEvent] = deque(maxlen=history_size)
        self._subscribers: set[StreamSubscription] = set()
        self._sequence = 0
        self._lock = threading.RLock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_event_id(self) -> Optional[str]:
        with self._lock:
            return self._history[-1].event_id if self._history else None

    async def handle_message(self, payload: Any) -> Any:
        if self._closed:
            raise TransportClosed(self.session_id)
        return await self.dispatcher.handle(payload)

    def publish(self, message: dict[str, Any]) -> StreamEvent:
        with self._lock:
            if self._closed:
                raise TransportClosed(self.session_id)
            self._sequence += 1
            event = StreamEvent(f"{self.session_id}:{self._sequence}", message)
            self._history.append(event)
            for subscriber in list(self._subscribers):
                subscriber.put(event)
        return event

    def _parse_marker(self, last_event_id: Optional[str]) -> Optional[int]:
        if not last_event_id:
            return None
        session_id, _, seq = last_event_id.rpartition(":")
        if session_id != self.session_id:
            return None
        try:
            return int(seq)
        except ValueError:
            return None

    def subscribe(self, last_event_id: Optional[str] = None) -> StreamSubscription:
        """Open a stream, replaying history after ``last_event_id`` if given."""
        with self._lock:
            if self._closed:
                raise TransportClosed(self.session_id)
            after = self._parse_marker(last_event_id)
            backlog: list[StreamEvent] = []
            if after is not None:
                backlog = [
                    e
                    for e in self._history
                    if int(e.event_id.rpartition(":")[2]) > after
                ]
            subscription = StreamSubscription(self, backlog)
            self._subscribers.add(subscription)
        log.debug(
            "stream opened",
            extra={
                "session_id": self.session_id,
                "replayed": len(backlog),
                "last_event_id": last_event_id,
            },
        )
        return subscription

    def _unsubscribe(self, subscription: StreamSubscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    async def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.put(None)
        log.debug("transport closed", extra={"session_id": self.session_id})
