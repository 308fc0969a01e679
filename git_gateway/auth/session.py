"""Per-caller authentication session.

AuthSession is a typed view over the signed cookie session maintained by
Starlette's SessionMiddleware. Only stateful deployments have one.
"""

from __future__ import annotations

import time
from typing import Any, MutableMapping, Optional

from fastapi import Request

CSRF_STATE_KEY = "oauth_state"
ACCESS_TOKEN_KEY = "access_token"
EXPIRES_AT_KEY = "expires_at"
PROTOCOL_SESSION_KEY = "protocol_session_id"


class AuthSession:
    """Typed accessors for the cookie session dictionary."""

    def __init__(self, data: MutableMapping[str, Any]):
        self._data = data

    @classmethod
    def from_request(cls, request: Request) -> Optional["AuthSession"]:
        if "session" not in request.scope:
            return None
        return cls(request.session)

    @property
    def csrf_state(self) -> Optional[str]:
        return self._data.get(CSRF_STATE_KEY)

    @csrf_state.setter
    def csrf_state(self, value: str) -> None:
        self._data[CSRF_STATE_KEY] = value

    def consume_csrf_state(self) -> Optional[str]:
        return self._data.pop(CSRF_STATE_KEY, None)

    @property
    def access_token(self) -> Optional[str]:
        return self._data.get(ACCESS_TOKEN_KEY)

    @property
    def expires_at(self) -> Optional[int]:
        return self._data.get(EXPIRES_AT_KEY)

    @property
    def is_expired(self) -> bool:
        expires_at = self.expires_at
        return expires_at is not None and time.time() >= expires_at

    def current_token(self) -> Optional[str]:
        """Stored token, or None if absent or past its expiry."""
        if not self.access_token:
            return None
        if self.is_expired:
            self.clear_token()
            return None
        return self.access_token

    def store_token(self, token: str, expires_in: Optional[int] = None) -> None:
        self._data[ACCESS_TOKEN_KEY] = token
        if expires_in:
            self._data[EXPIRES_AT_KEY] = int(time.time()) + int(expires_in)
        else:
            self._data.pop(EXPIRES_AT_KEY, None)

    def clear_token(self) -> None:
        self._data.pop(ACCESS_TOKEN_KEY, None)
        self._data.pop(EXPIRES_AT_KEY, None)

    @property
    def protocol_session_id(self) -> Optional[str]:
        return self._data.get(PROTOCOL_SESSION_KEY)

    @protocol_session_id.setter
    def protocol_session_id(self, value: Optional[str]) -> None:
        if value is None:
            self._data.pop(PROTOCOL_SESSION_KEY, None)
        else:
            self._data[PROTOCOL_SESSION_KEY] = value

    def destroy(self) -> None:
        self._data.clear()
