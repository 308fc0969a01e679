"""JSON-RPC 2.0 dispatch for the tool protocol.

Methods: initialize, ping, tools/list, tools/call, and notifications (which
never get a response).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Optional

from starlette.concurrency import run_in_threadpool

from git_gateway import SERVICE_NAME, VERSION
from git_gateway.errors import (
    INTERNAL_RPC_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
)
from git_gateway.repository import RepositoryCapability, RepositoryError

log = logging.getLogger("git-gateway.rpc")

SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
LATEST_PROTOCOL_VERSION = SUPPORTED_PROTOCOL_VERSIONS[-1]

SERVER_INSTRUCTIONS = (
    "Use the search tool to find files in the repository by name or content, "
    "then the fetch tool with a result id to read the full file."
)

TOOLS: list[dict[str, Any]] = [
    {
        "name": "search",
        "description": (
            "Search the repository. Exact filename matches rank first, then "
            "partial filename matches, then files whose content matches."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search text"},
            },
            "required": ["query"],
        },
    },
    {
        "name": "fetch",
        "description": "Fetch the full content of a file returned by search.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {
                    "type": "string",
                    "description": "File id (repository-relative path)",
                },
            },
            "required": ["id"],
        },
    },
]

Publish = Callable[[dict[str, Any]], Any]


class RpcError(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def rpc_result(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def rpc_error(
    request_id: Any, code: int, message: str, data: Any = None
) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def _text_content(payload: Any) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(payload, indent=2)}]}


class RpcDispatcher:
    """Routes JSON-RPC messages to handlers.

    ``publish`` pushes server-initiated notifications onto the session's
    stream.
    """

    def __init__(
        self,
        repository: RepositoryCapability,
        publish: Optional[Publish] = None,
    ):
        self.repository = repository
        self.publish = publish
        self.initialized = False
        self.protocol_version: Optional[str] = None
        self._methods: dict[str, Callable[[dict[str, Any]], Awaitable[Any]]] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
        }

    async def handle(self, payload: Any) -> Any:
        """Handle one message or a batch. Returns None if nothing to send."""
        if isinstance(payload, list):
            if not payload:
                return rpc_error(None, INVALID_REQUEST, "Empty batch")
            responses = [await self.handle_one(item) for item in payload]
            responses = [r for r in responses if r is not None]
            return responses or None
        return await self.handle_one(payload)

    async def handle_one(self, message: Any) -> Optional[dict[str, Any]]:
        if (
            not isinstance(message, dict)
            or message.get("jsonrpc") != "2.0"
            or not isinstance(message.get("method"), str)
        ):
            request_id = message.get("id") if isinstance(message, dict) else None
            return rpc_error(request_id, INVALID_REQUEST, "Invalid Request")

        method = message["method"]
        is_notification = "id" not in message
        request_id = message.get("id")
        params = message.get("params") or {}

        if is_notification:
            if method == "notifications/initialized":
                self.initialized = True
            log.debug("notification", extra={"method": method})
            return None

        handler = self._methods.get(method)
        if handler is None:
            return rpc_error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")
        if not isinstance(params, dict):
            return rpc_error(request_id, INVALID_PARAMS, "params must be an object")

        try:
            return rpc_result(request_id, await handler(params))
        except RpcError as e:
            return rpc_error(request_id, e.code, e.message, e.data)
        except Exception:
            log.exception("rpc handler failed", extra={"method": method})
            return rpc_error(request_id, INTERNAL_RPC_ERROR, "Internal error")

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        if requested in SUPPORTED_PROTOCOL_VERSIONS:
            version = requested
        else:
            version = LATEST_PROTOCOL_VERSION
        self.protocol_version = version
        client = params.get("clientInfo") or {}
        log.info(
            "protocol session initialized",
            extra={"protocol_version": version, "client": client.get("name")},
        )
        return {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVICE_NAME, "version": VERSION},
            "instructions": SERVER_INSTRUCTIONS,
        }

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": TOOLS}

    async def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            raise RpcError(INVALID_PARAMS, "arguments must be an object")

        meta = params.get("_meta") or {}
        if not isinstance(meta, dict):
            raise RpcError(INVALID_PARAMS, "_meta must be an object")
        progress_token = meta.get("progressToken")
        self._progress(progress_token, 0)

        if name == "search":
            result = await self._search(arguments)
        elif name == "fetch":
            result = await self._fetch(arguments)
        else:
            raise RpcError(METHOD_NOT_FOUND, f"Unknown tool: {name}")

        self._progress(progress_token, 1)
        return result

    async def _search(self, arguments: dict[str, Any]) -> dict[str, Any]:
        query = arguments.get("query")
        if not isinstance(query, str) or not query.strip():
            raise RpcError(INVALID_PARAMS, "search requires a non-empty 'query'")
        try:
            # Filesystem walk runs off the event loop so other sessions keep moving
            matches = await run_in_threadpool(self.repository.search, query)
        except RepositoryError as e:
            return {**_text_content({"error": str(e)}), "isError": True}
        return _text_content({"results": [m.to_dict() for m in matches]})

    async def _fetch(self, arguments: dict[str, Any]) -> dict[str, Any]:
        document_id = arguments.get("id")
        if not isinstance(document_id, str) or not document_id:
            raise RpcError(INVALID_PARAMS, "fetch requires an 'id'")
        try:
            document = await run_in_threadpool(self.repository.fetch, document_id)
        except RepositoryError as e:
            return {**_text_content({"error": str(e)}), "isError": True}
        return _text_content(document.to_dict())

    def _progress(self, token: Any, progress: int) -> None:
        if token is None or self.publish is None:
            return
        self.publish(
            {
                "jsonrpc": "2.0",
                "method": "notifications/progress",
                "params": {"progressToken": token, "progress": progress, "total": 1},
            }
        )
