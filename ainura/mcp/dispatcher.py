"""MCP protocol dispatcher.

Terminates JSON-RPC 2.0 requests from any transport:

  initialize                 — identity / version negotiation
  notifications/initialized  — acknowledgment, never answered
  tools/list                 — static tool table
  tools/call                 — the only method that reaches devices
  ping                       — liveness

A response is produced iff the request carried an ``id``.

Device resolution never guesses. A device-scoped call without a usable
``deviceId`` gets an advisory tool result that tells the agent what to do
next (connect a device, or pick one from the listed devices) instead of
a bare error code.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from ainura import __version__
from ainura.config import DEFAULT_PORT, PROTOCOL_VERSION, SERVER_NAME
from ainura.devices.models import ConnectedDevice
from ainura.devices.peer import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
)
from ainura.devices.registry import DeviceRegistry
from ainura.mcp.bridge import RpcBridge
from ainura.mcp.broadcast import BroadcastCoordinator
from ainura.mcp.tools import ALL_DEVICES, ROUTES, TOOLS

logger = logging.getLogger(__name__)


class ProtocolError(Exception):
    """A request the dispatcher cannot serve; becomes a JSON-RPC error object."""

    def __init__(self, message: str, code: int = INTERNAL_ERROR) -> None:
        super().__init__(message)
        self.code = code


class DeviceNotResolved(Exception):
    """No device could be resolved; carries the advisory for the agent."""

    def __init__(self, advisory: str) -> None:
        super().__init__(advisory)
        self.advisory = advisory


# ── Tool-result envelopes ─────────────────────────────────────────


def text_result(payload: Any) -> dict[str, Any]:
    text = payload if isinstance(payload, str) else json.dumps(
        payload, indent=2, ensure_ascii=False, default=str
    )
    return {"content": [{"type": "text", "text": text}]}


def error_result(text: str) -> dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": True}


class MCPDispatcher:
    """Routes JSON-RPC requests; resolves devices through the registry.

    Args:
        registry: The shared :class:`DeviceRegistry`.
        guide: Integration guide markdown returned by ``get_started``.
        port: Advertised in the "connect a device" advisory.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        guide: str = "",
        port: int = DEFAULT_PORT,
        bridge: RpcBridge | None = None,
        coordinator: BroadcastCoordinator | None = None,
    ) -> None:
        self.registry = registry
        self.guide = guide
        self.port = port
        self.bridge = bridge or RpcBridge()
        self.coordinator = coordinator or BroadcastCoordinator()

    # ── JSON-RPC ───────────────────────────────────────────────────

    async def handle_request(self, request: Any) -> dict[str, Any] | None:
        """Handle one decoded JSON-RPC message; ``None`` means no reply."""
        if not isinstance(request, dict):
            logger.warning("Ignoring non-object JSON-RPC message: %.80r", request)
            return None

        has_id = "id" in request
        request_id = request.get("id")
        method = request.get("method")

        if method == "notifications/initialized":
            return None

        try:
            if not isinstance(method, str):
                raise ProtocolError("Invalid request: missing method", INVALID_REQUEST)
            result = await self._dispatch(method, request.get("params"))
        except ProtocolError as exc:
            logger.warning("JSON-RPC %s failed: %s", method, exc)
            return self._error(request_id, exc.code, str(exc)) if has_id else None
        except Exception as exc:  # noqa: BLE001
            logger.exception("JSON-RPC %s raised", method)
            return self._error(request_id, INTERNAL_ERROR, str(exc)) if has_id else None

        if not has_id:
            return None
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def _dispatch(self, method: str, params: Any) -> Any:
        if method == "initialize":
            return self._initialize(params)
        if method == "tools/list":
            return {"tools": TOOLS}
        if method == "tools/call":
            if not isinstance(params, dict) or not params.get("name"):
                raise ProtocolError("tools/call requires a tool name", INVALID_PARAMS)
            return await self.call_tool(params["name"], params.get("arguments"))
        if method == "ping":
            return {}
        raise ProtocolError(f"Unknown method: {method}", METHOD_NOT_FOUND)

    def _initialize(self, params: Any) -> dict[str, Any]:
        client = "unknown client"
        if isinstance(params, dict):
            client = (params.get("clientInfo") or {}).get("name") or client
        logger.info("MCP initialize: %s", client)
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    @staticmethod
    def _error(request_id: Any, code: int, message: str) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}

    # ── tools/call ─────────────────────────────────────────────────

    async def call_tool(self, name: str, arguments: Any = None) -> dict[str, Any]:
        """Run tool *name* and wrap the outcome in an MCP tool result.

        Never raises for tool-level problems: resolution failures become
        advisories and device failures become ``isError`` results.
        """
        args = arguments if arguments is not None else {}
        if not isinstance(args, dict):
            return error_result("Error: tool arguments must be an object")
        try:
            payload = await self._run_tool(name, args)
        except DeviceNotResolved as exc:
            # Advisories tell the agent what to do next; they are not failures.
            return text_result(exc.advisory)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Tool %s failed: %s", name, exc)
            return error_result(f"Error: {exc}")
        return text_result(payload)

    async def _run_tool(self, name: str, args: dict[str, Any]) -> Any:
        if name == "list_devices":
            return await self._list_devices(args)
        if name == "get_started":
            return await self._get_started(args)
        if name == "get_device_details":
            return await self._get_device_details(args)

        route = ROUTES.get(name)
        if route is None:
            raise ValueError(f"Unknown tool: {name}")

        device_id = args.get("deviceId")
        if route.broadcast_key and device_id == ALL_DEVICES:
            devices = self.registry.snapshot()
            if not devices:
                raise DeviceNotResolved(self._no_devices_advisory())
            return await self.coordinator.broadcast(devices, route, args)

        device = self.resolve(device_id)
        if route.requires and not args.get(route.requires):
            raise ValueError(f"Tool {route.requires} is required")
        return await self.bridge.call(device, route, args)

    # ── Device resolution ──────────────────────────────────────────

    def resolve(self, device_id: Any) -> ConnectedDevice:
        """Return the named device or raise :class:`DeviceNotResolved`."""
        if not device_id:
            if not len(self.registry):
                raise DeviceNotResolved(self._no_devices_advisory())
            raise DeviceNotResolved(self._choose_device_advisory())

        device = self.registry.lookup(str(device_id))
        if device is None:
            hint = ""
            if device_id == ALL_DEVICES:
                hint = ' "all" is only accepted by deploy and send_mcp_message.'
            raise DeviceNotResolved(
                f'Device "{device_id}" not found.{hint} '
                "Use list_devices to see available devices."
            )
        return device

    def _no_devices_advisory(self) -> str:
        return (
            "No PageNodes devices are connected to the MCP server.\n\n"
            "IMPORTANT: Tell the user to:\n"
            "1. Open PageNodes in their browser (or start an Electron/Node.js instance)\n"
            "2. Click the hamburger menu (☰) → Settings\n"
            '3. Enable "MCP Server Connection"\n'
            f"4. Ensure the port matches (default: {self.port})\n\n"
            "The MCP server is running and waiting for PageNodes to connect. "
            "Once connected, you can retry the operation."
        )

    def _choose_device_advisory(self) -> str:
        devices = [d.record.summary() for d in self.registry.snapshot()]
        return (
            "deviceId is required. You must explicitly choose a device after "
            "examining its capabilities.\n\n"
            "Use list_devices to see available devices, then get_device_details to "
            "inspect capabilities before choosing.\n\n"
            f"Available devices:\n{json.dumps(devices, indent=2, ensure_ascii=False)}\n\n"
            "IMPORTANT: Do not assume devices have the same capabilities. A browser "
            "device cannot control GPIO. An embedded device may not have WebAudio. "
            "Always verify the target device has the nodes you need."
        )

    # ── Registry-level tools ───────────────────────────────────────

    async def _list_devices(self, args: dict[str, Any]) -> dict[str, Any]:
        devices = self.registry.list(
            type=args.get("type"), node=args.get("node"), status=args.get("status")
        )
        custom = await asyncio.gather(*(self._custom_tools(d) for d in devices))
        entries = []
        for device, tools in zip(devices, custom):
            rec = device.record
            entries.append({
                "id": rec.id,
                "type": rec.type,
                "name": rec.name,
                "status": rec.status.value,
                "url": rec.url,
                "connectedAt": rec.connected_at,
                "nodes": list(rec.nodes),
                "nodeCount": len(rec.nodes),
                "customTools": [t.get("name") for t in tools],
                "meta": rec.meta,
            })
        return {
            "count": len(entries),
            "devices": entries,
            "hint": "Use get_node_details(deviceId, type) to inspect node implementation "
                    "details - they vary by device.",
        }

    async def _get_device_details(self, args: dict[str, Any]) -> dict[str, Any]:
        device = self.resolve(args.get("deviceId"))
        state = await device.peer.call("getState")
        tools = await self._custom_tools(device)
        return {
            "registration": device.record.to_dict(),
            **(state if isinstance(state, dict) else {"state": state}),
            "customTools": tools,
        }

    async def _get_started(self, args: dict[str, Any]) -> dict[str, Any]:
        if not args.get("deviceId"):
            if not len(self.registry):
                return {
                    "guide": self.guide,
                    "connectedDevices": 0,
                    "devices": [],
                    "nodeCatalog": {},
                    "hint": "No devices connected. Tell the user to open PageNodes and "
                            "enable MCP in Settings.",
                }
            return {
                "guide": self.guide,
                "connectedDevices": len(self.registry),
                "devices": [d.record.summary() for d in self.registry.snapshot()],
                "nodeCatalog": self.registry.catalog(),
                "hint": "Use get_node_details(deviceId, type) for full node properties. "
                        "Use list_devices for more device info.",
            }

        device = self.resolve(args["deviceId"])
        state = await device.peer.call("getState")
        return {
            "guide": self.guide,
            "deviceId": device.id,
            "deviceType": device.record.type,
            "deviceName": device.record.name,
            "connectedDevices": len(self.registry),
            **(state if isinstance(state, dict) else {"state": state}),
        }

    async def _custom_tools(self, device: ConnectedDevice) -> list[dict[str, Any]]:
        """Best-effort ``getCustomTools``; devices without support report none."""
        try:
            result = await device.peer.call("getCustomTools")
        except Exception as exc:  # noqa: BLE001
            logger.debug("getCustomTools unavailable on %s: %s", device.id, exc)
            return []
        tools = result.get("tools") if isinstance(result, dict) else None
        return [t for t in tools or [] if isinstance(t, dict)]
