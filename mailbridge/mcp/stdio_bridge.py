"""stdio ↔ HTTP bridge for the mail tool server.

An MCP client talks newline-delimited JSON-RPC over stdio; the mail tool
server only speaks HTTP. This module sits in between:

1. ``initialize`` is answered locally and notifications are swallowed, so the
   handshake works even before the mail host is up.
2. Every other line is POSTed unchanged to the tool server and its JSON-RPC
   envelope is written back as one line.
3. Any failure on the way (bad input line, connection refused, timeout,
   unparseable reply) becomes a single ``-32700`` error line with ``id: null``.

Lines are handled concurrently. Output is serialised through ``LineWriter`` so
replies never interleave, and the process only finishes once stdin is closed
*and* every forwarded call has been answered.
"""

import asyncio
import json
import logging
import os
import signal
import sys
from collections.abc import AsyncIterable
from typing import Any, Protocol

import aiohttp
import anyio
from mcp.types import (
    PARSE_ERROR,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    ToolsCapability,
)

from mailbridge.config import Settings
from mailbridge.sanitize import sanitize_json_line

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "mailbridge"
SERVER_VERSION = "0.1.0"

_LOCAL_NOTIFICATION_PREFIX = "notifications/"


class BridgeError(Exception):
    """A transport failure between the bridge and the tool server."""


# ── Shared state ───────────────────────────────────────────────────────────────


class BridgeState:
    """In-flight counter and stdin-closed flag, the bridge's only shared state.

    Only touched from the event loop thread, so no locking is needed.
    """

    def __init__(self) -> None:
        self.pending = 0
        self.stream_closed = False
        self._drained: anyio.Event | None = None

    @property
    def should_exit(self) -> bool:
        return self.stream_closed and self.pending == 0

    def begin(self) -> None:
        self.pending += 1

    def end(self) -> None:
        self.pending -= 1
        self._check_exit()

    def close_stream(self) -> None:
        self.stream_closed = True
        self._check_exit()

    async def wait_drained(self) -> None:
        """Return once stdin is closed and nothing is in flight."""
        if self.should_exit:
            return
        if self._drained is None:
            self._drained = anyio.Event()
        await self._drained.wait()

    def _check_exit(self) -> None:
        if self.should_exit and self._drained is not None:
            self._drained.set()


# ── Output ─────────────────────────────────────────────────────────────────────


class AsyncSink(Protocol):
    async def write(self, data: bytes) -> Any: ...

    async def flush(self) -> Any: ...


class LineWriter:
    """Writes one JSON document per line, strictly one line at a time.

    Each write is followed by a flush that only completes once the sink has
    accepted the bytes; the next line waits for it.
    """

    def __init__(self, sink: AsyncSink) -> None:
        self._sink = sink
        self._lock = anyio.Lock()

    async def write_message(self, message: dict[str, Any]) -> None:
        data = json.dumps(message, ensure_ascii=False, separators=(",", ":")) + "\n"
        async with self._lock:
            await self._sink.write(data.encode("utf-8"))
            await self._sink.flush()


# ── Forwarding ─────────────────────────────────────────────────────────────────


class Forwarder(Protocol):
    async def forward(self, message: dict[str, Any]) -> dict[str, Any]: ...


def is_response_envelope(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and value.get("jsonrpc") == "2.0"
        and "id" in value
        and ("result" in value or "error" in value)
    )


def parse_response_body(text: str) -> dict[str, Any]:
    """Parse the tool server's reply, repairing raw control characters once."""
    try:
        parsed = json.loads(text)
    except ValueError:
        try:
            parsed = json.loads(sanitize_json_line(text))
        except ValueError as exc:
            raise BridgeError(f"Invalid JSON from mail server: {exc}") from exc
    if not is_response_envelope(parsed):
        raise BridgeError("Invalid response from mail server: not a JSON-RPC response")
    return parsed


class HttpForwarder:
    """POSTs JSON-RPC messages to the tool server with a fixed total timeout.

    Usage::

        async with HttpForwarder("http://127.0.0.1:8765/") as forwarder:
            response = await forwarder.forward({"jsonrpc": "2.0", "id": 1, ...})
    """

    def __init__(self, url: str, timeout: float = 30.0) -> None:
        self._url = url
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpForwarder":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def forward(self, message: dict[str, Any]) -> dict[str, Any]:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

        logger.debug("→ %s id=%r", message.get("method"), message.get("id"))
        try:
            async with self._session.post(self._url, json=message) as response:
                raw = await response.read()
        except TimeoutError:
            raise BridgeError("Request to mail server timed out") from None
        except aiohttp.ClientError as exc:
            raise BridgeError(
                f"Connection failed: {exc}. Is the mail tool server running (mailbridge serve)?"
            ) from exc
        return parse_response_body(raw.decode("utf-8", errors="replace"))


# ── Bridge ─────────────────────────────────────────────────────────────────────


def initialize_result() -> dict[str, Any]:
    result = InitializeResult(
        protocolVersion=PROTOCOL_VERSION,
        capabilities=ServerCapabilities(tools=ToolsCapability()),
        serverInfo=Implementation(name=SERVER_NAME, version=SERVER_VERSION),
    )
    return result.model_dump(by_alias=True, exclude_none=True)


def bridge_error(message: str) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": None,
        "error": {"code": PARSE_ERROR, "message": f"Bridge error: {message}"},
    }


class StdioBridge:
    """Answers the MCP handshake locally and relays everything else over HTTP.

    ``notifications/cancelled`` is accepted but does not cancel the forwarded
    call it refers to; that call still runs to completion or timeout.
    """

    def __init__(
        self,
        forwarder: Forwarder,
        writer: LineWriter,
        state: BridgeState | None = None,
    ) -> None:
        self._forwarder = forwarder
        self._writer = writer
        self.state = state or BridgeState()

    async def run(self, lines: AsyncIterable[bytes | str]) -> None:
        """Handle every line of ``lines``; return once all replies are written."""
        async with anyio.create_task_group() as tg:
            async for raw in lines:
                line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
                if not line.strip():
                    continue
                # Counted before the task starts so EOF can never race past it.
                self.state.begin()
                tg.start_soon(self._handle, line)
            logger.info("stdin closed; %d request(s) still in flight", self.state.pending)
            self.state.close_stream()
            await self.state.wait_drained()

    async def handle_line(self, line: str) -> None:
        """Handle a single line to completion."""
        self.state.begin()
        await self._handle(line)

    async def _handle(self, line: str) -> None:
        try:
            try:
                response = await self._respond(line)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Bridge error: %s", exc)
                response = bridge_error(str(exc))
            if response is not None:
                try:
                    await self._writer.write_message(response)
                except (OSError, anyio.BrokenResourceError) as exc:
                    logger.error("Could not write response: %s", exc)
        finally:
            self.state.end()

    async def _respond(self, line: str) -> dict[str, Any] | None:
        try:
            message = json.loads(line)
        except ValueError as exc:
            raise BridgeError(f"Invalid JSON on input: {exc}") from exc
        if not isinstance(message, dict):
            raise BridgeError("Invalid JSON-RPC message: expected an object")

        method = message.get("method")
        if method == "initialize":
            return {"jsonrpc": "2.0", "id": message.get("id"), "result": initialize_result()}
        if isinstance(method, str) and method.startswith(_LOCAL_NOTIFICATION_PREFIX):
            logger.debug("Notification %s (no response)", method)
            return None
        return await self._forwarder.forward(message)


# ── Entry point ────────────────────────────────────────────────────────────────


def _block_stdout() -> None:
    """Put stdout in blocking mode so every flushed byte reaches the pipe."""
    try:
        os.set_blocking(sys.stdout.fileno(), True)
    except (AttributeError, OSError, ValueError):
        pass


def _exit_now() -> None:
    logger.info("Signal received; exiting without waiting for in-flight requests")
    os._exit(0)


def main(settings: Settings | None = None) -> None:
    """Run the bridge on this process's stdin/stdout."""
    settings = settings or Settings.from_env()
    _block_stdout()
    try:
        asyncio.run(_amain(settings))
    except KeyboardInterrupt:
        # Platforms without add_signal_handler land here
        pass


async def _amain(settings: Settings) -> None:
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _exit_now)
    except (NotImplementedError, AttributeError):
        pass

    stdin = anyio.wrap_file(sys.stdin.buffer)
    stdout = anyio.wrap_file(sys.stdout.buffer)
    logger.info("Bridging stdio to %s", settings.server_url)
    async with HttpForwarder(settings.server_url, settings.timeout_seconds) as forwarder:
        bridge = StdioBridge(forwarder, LineWriter(stdout))
        await bridge.run(stdin)
