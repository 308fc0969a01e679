"""CSRF protection for the broker login and consent forms.

Double-submit pattern: a signed token is set in a cookie and embedded in the
rendered form; a POST is accepted only if both copies are present, equal and
carry a valid, unexpired signature.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from typing import Optional

from fastapi import Request, Response

log = logging.getLogger("git-gateway.csrf")

FORM_FIELD = "csrf_token"
COOKIE_NAME = "gw_form_csrf"


class FormCSRF:
    TOKEN_TTL = 600

    def __init__(self, secret: str, *, secure_cookie: bool = False):
        self._secret = secret.encode()
        self._secure_cookie = secure_cookie

    def generate_token(self) -> str:
        """Format: random + "." + timestamp + "." + hmac"""
        random_part = secrets.token_urlsafe(24)
        timestamp = str(int(time.time()))
        data = f"{random_part}.{timestamp}".encode()
        signature = hmac.new(self._secret, data, hashlib.sha256).hexdigest()[:16]
        return f"{random_part}.{timestamp}.{signature}"

    def _token_valid(self, token: str) -> bool:
        try:
            random_part, timestamp_str, signature = token.split(".")
            data = f"{random_part}.{timestamp_str}".encode()
            expected = hmac.new(self._secret, data, hashlib.sha256).hexdigest()[:16]
            if not hmac.compare_digest(expected.encode(), signature.encode()):
                log.warning("form CSRF token signature mismatch")
                return False
            if time.time() - int(timestamp_str) > self.TOKEN_TTL:
                log.warning("form CSRF token expired")
                return False
            return True
        except ValueError as e:
            log.warning("form CSRF token validation error: %s", e)
            return False

    def set_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            key=COOKIE_NAME,
            value=token,
            max_age=self.TOKEN_TTL,
            httponly=True,
            secure=self._secure_cookie,
            samesite="lax",
            path="/broker",
        )

    def validate(self, request: Request, form_token: Optional[str]) -> bool:
        cookie_token = request.cookies.get(COOKIE_NAME)
        if not cookie_token or not form_token:
            return False
        if not hmac.compare_digest(cookie_token.encode(), form_token.encode()):
            return False
        return self._token_valid(form_token)
