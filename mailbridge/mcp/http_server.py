"""HTTP side of the relay: one JSON-RPC call per ``POST /`` on a loopback port."""

import json
import logging
from typing import Any

from aiohttp import web

from mailbridge.sanitize import encode_for_transport
from mailbridge.tools.dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

SERVER_ERROR = -32000


class ProtocolError(Exception):
    """A request that is valid JSON but not a call this server can route."""


def _json_response(envelope: dict[str, Any]) -> web.Response:
    """Serialise ``envelope`` the way the mail host writes responses.

    The host writes response strings verbatim as bytes, so the JSON text is
    pre-encoded with ``encode_for_transport`` and emitted one byte per code
    unit; the resulting body is UTF-8.
    """
    text = json.dumps(envelope, ensure_ascii=False)
    body = (encode_for_transport(text) or "").encode("latin-1")
    return web.Response(body=body, content_type="application/json", charset="utf-8")


def _tool_result(payload: Any) -> dict[str, Any]:
    return {
        "content": [
            {"type": "text", "text": json.dumps(payload, indent=2, ensure_ascii=False)}
        ]
    }


class ToolServer:
    """aiohttp handler that routes ``tools/list`` and ``tools/call`` to a dispatcher."""

    def __init__(self, dispatcher: ToolDispatcher) -> None:
        self._dispatcher = dispatcher

    async def handle(self, request: web.Request) -> web.Response:
        if request.method != "POST":
            return web.Response(status=405, reason="Method Not Allowed", text="POST only")

        try:
            message = json.loads(await request.text())
            if not isinstance(message, dict):
                raise ValueError("JSON-RPC message must be an object")
        except (ValueError, UnicodeDecodeError):
            return web.Response(status=400, reason="Bad Request", text="Invalid JSON")

        request_id = message.get("id")
        try:
            result = self._route(message.get("method"), message.get("params"))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Request %r failed: %s", request_id, exc)
            return _json_response({
                "jsonrpc": "2.0",
                "id": request_id,
                "error": {"code": SERVER_ERROR, "message": str(exc)},
            })
        return _json_response({"jsonrpc": "2.0", "id": request_id, "result": result})

    def _route(self, method: Any, params: Any) -> dict[str, Any]:
        if method == "tools/list":
            return {"tools": self._dispatcher.descriptors()}
        if method == "tools/call":
            params = params if isinstance(params, dict) else {}
            name = params.get("name")
            if not name:
                raise ProtocolError("Missing tool name")
            logger.info("tools/call %s", name)
            return _tool_result(self._dispatcher.call(name, params.get("arguments") or {}))
        raise ProtocolError(f"Unknown method: {method}")


def create_app(dispatcher: ToolDispatcher) -> web.Application:
    """Application with the single ``/`` route registered for every HTTP method."""
    app = web.Application()
    server = ToolServer(dispatcher)
    app.router.add_route("*", "/", server.handle)
    return app


def run_server(dispatcher: ToolDispatcher, host: str, port: int) -> None:
    logger.info("Mail tool server listening on http://%s:%d/", host, port)
    web.run_app(create_app(dispatcher), host=host, port=port, print=None)
