"""Symmetric JSON-RPC 2.0 peer over one device WebSocket.

Either side may call the other. The device calls ``registerDevice`` on
us; we call ``getState``, ``deploy``, ``getFlows`` ... on the device.
Every outbound call is an :class:`asyncio.Future` keyed by its request
id, so a timeout or cancellation can be layered on later without
touching callers.

Wire format (positional params)::

    {"jsonrpc": "2.0", "id": 7, "method": "getLogs", "params": [100, null, null]}
    {"jsonrpc": "2.0", "id": 7, "result": {...}}
    {"jsonrpc": "2.0", "id": 7, "error": {"code": -32603, "message": "..."}}
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

# JSON-RPC 2.0 error codes, shared by the device and agent sides.
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

Handler = Callable[..., Awaitable[Any]]


class RemoteCallError(Exception):
    """Raised when the device answers a call with an error object."""

    def __init__(self, message: str, code: int = INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.code = code


class PeerClosedError(RemoteCallError):
    """Raised for calls pending on, or issued to, a closed connection."""


class TextSender(Protocol):
    async def send_text(self, data: str) -> None: ...


class DevicePeer:
    """One device connection's RPC endpoint.

    Parameters
    ----------
    transport:
        Anything with an ``async send_text(str)``; in production the
        FastAPI :class:`~fastapi.WebSocket`.
    label:
        Used in log lines only.
    """

    def __init__(self, transport: TextSender, label: str = "device") -> None:
        self._transport = transport
        self.label = label
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        self._handlers: dict[str, Handler] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.on_message: Callable[[], None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_calls(self) -> int:
        return len(self._pending)

    def add_handler(self, method: str, handler: Handler) -> None:
        """Expose *handler* to the device under *method*."""
        self._handlers[method] = handler

    # ── Outbound ───────────────────────────────────────────────────

    async def call(self, method: str, *params: Any) -> Any:
        """Invoke *method* on the device and wait for its answer.

        No timeout is applied: a device that never answers keeps this
        call pending until the connection closes.
        """
        if self._closed:
            raise PeerClosedError(f"Connection to {self.label} is closed")
        call_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[call_id] = future
        try:
            await self._send({
                "jsonrpc": "2.0",
                "id": call_id,
                "method": method,
                "params": list(params),
            })
            return await future
        finally:
            self._pending.pop(call_id, None)

    # ── Inbound ────────────────────────────────────────────────────

    async def feed(self, raw: str) -> None:
        """Process one text frame received from the device."""
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Malformed frame from %s: %.80r", self.label, raw)
            return
        if not isinstance(msg, dict):
            logger.warning("Unexpected frame from %s: %.80r", self.label, raw)
            return

        if self.on_message is not None:
            self.on_message()

        if "method" in msg:
            # Run as a task: a handler may itself call the device, and the
            # read loop must stay free to deliver that answer.
            task = asyncio.get_running_loop().create_task(self._handle_request(msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        elif "id" in msg:
            self._handle_response(msg)
        else:
            logger.warning("Frame from %s is neither request nor response", self.label)

    def close(self) -> None:
        """Fail every pending call and stop running device-initiated handlers."""
        if self._closed:
            return
        self._closed = True
        for future in self._pending.values():
            if not future.done():
                future.set_exception(PeerClosedError(f"{self.label} disconnected"))
        self._pending.clear()
        for task in self._tasks:
            task.cancel()

    def _handle_response(self, msg: dict) -> None:
        future = self._pending.get(msg.get("id"))
        if future is None or future.done():
            logger.debug("Response for unknown call id %r from %s", msg.get("id"), self.label)
            return
        error = msg.get("error")
        if error is not None:
            if isinstance(error, dict):
                future.set_exception(RemoteCallError(
                    str(error.get("message", "Unknown device error")),
                    error.get("code", INTERNAL_ERROR),
                ))
            else:
                future.set_exception(RemoteCallError(str(error)))
        else:
            future.set_result(msg.get("result"))

    async def _handle_request(self, msg: dict) -> None:
        method = msg.get("method")
        call_id = msg.get("id")
        params = msg.get("params")
        if isinstance(params, list):
            args = params
        elif params is None:
            args = []
        else:
            args = [params]

        handler = self._handlers.get(method)
        if handler is None:
            logger.warning("Unknown method %r from %s", method, self.label)
            await self._reply_error(call_id, METHOD_NOT_FOUND, f"Unknown method: {method}")
            return

        try:
            result = await handler(*args)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Handler %s failed for %s: %s", method, self.label, exc)
            code = getattr(exc, "code", INTERNAL_ERROR)
            await self._reply_error(call_id, code, str(exc))
            return

        if call_id is not None and not self._closed:
            await self._send({"jsonrpc": "2.0", "id": call_id, "result": result})

    async def _reply_error(self, call_id: Any, code: int, message: str) -> None:
        if call_id is None or self._closed:
            return
        await self._send({
            "jsonrpc": "2.0",
            "id": call_id,
            "error": {"code": code, "message": message},
        })

    async def _send(self, payload: dict) -> None:
        await self._transport.send_text(json.dumps(payload))
