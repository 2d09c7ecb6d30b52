"""WebSocket endpoint for device connections.

Any Ainura-compatible runtime opens a WebSocket to the server root and
speaks symmetric JSON-RPC (see :mod:`ainura.devices.peer`):

  Device → Server:
    registerDevice(info), registerClient(info)  [legacy]

  Server → Device:
    getState, getFlows, createFlow, addNodes, updateNode, deleteNode,
    deploy, getDebugOutput, getErrors, getLogs, ... (opaque, routed only)

The device is unregistered when the socket closes; there is no heartbeat.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from ainura.devices.peer import DevicePeer
from ainura.devices.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class DeviceConnection:
    """Binds one WebSocket's peer to at most one registry slot."""

    def __init__(self, registry: DeviceRegistry, peer: DevicePeer) -> None:
        self.registry = registry
        self.peer = peer
        self.device_id: str | None = None
        peer.add_handler("registerDevice", self.register_device)
        peer.add_handler("registerClient", self.register_client)
        peer.on_message = self._touch

    async def register_device(self, info: Any = None) -> dict:
        self._release()
        self.device_id = await self.registry.register(info, self.peer)
        self.peer.label = self.device_id
        return {"success": True, "deviceId": self.device_id}

    async def register_client(self, info: Any = None) -> dict:
        self._release()
        self.device_id = await self.registry.register_legacy(info, self.peer)
        self.peer.label = self.device_id
        return {"success": True, "deviceId": self.device_id}

    def disconnect(self) -> None:
        if self.peer.pending_calls:
            logger.warning(
                "%s disconnected with %d calls pending; failing them",
                self.device_id or self.peer.label, self.peer.pending_calls,
            )
        self.peer.close()
        self._release()

    def _release(self) -> None:
        if self.device_id:
            self.registry.unregister(self.device_id, self.peer)
            self.device_id = None

    def _touch(self) -> None:
        if self.device_id:
            self.registry.touch(self.device_id)


async def device_ws_handler(websocket: WebSocket) -> None:
    """Handle a device WebSocket connection.

    Mounted by :func:`ainura.server.create_app` at ``/``; the registry is
    taken from ``app.state``.
    """
    registry: DeviceRegistry = websocket.app.state.registry
    await websocket.accept()
    client = websocket.client.host if websocket.client else "unknown"
    conn = DeviceConnection(registry, DevicePeer(websocket, label=f"ws:{client}"))
    logger.debug("Device socket opened from %s", client)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                try:
                    raw = (message.get("bytes") or b"").decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("Ignoring non-UTF-8 binary frame from %s", conn.device_id or client)
                    continue
            await conn.peer.feed(raw)
    except WebSocketDisconnect:
        logger.debug("Device socket closed: %s", conn.device_id or client)
    except Exception:
        logger.exception("Error on device socket %s", conn.device_id or client)
    finally:
        conn.disconnect()
