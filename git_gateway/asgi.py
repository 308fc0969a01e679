"""ASGI entrypoint for the Git Gateway runtime.

This file exists solely to avoid import-time side effects in git_gateway.main.
Use this in uvicorn/gunicorn:  git_gateway.asgi:app
"""

from __future__ import annotations

from git_gateway.main import build_app

app = build_app()
