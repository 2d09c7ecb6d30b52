"""MCP tool table.

Two tables live here:

* :data:`TOOLS` — the schemas advertised by ``tools/list``. They are
  documentation for the agent; the dispatcher does not enforce them.
* :data:`ROUTES` — for every device-scoped tool, which remote method it
  maps to and how the tool arguments become positional params.

Tools absent from :data:`ROUTES` (``list_devices``, ``get_device_details``,
``get_started``) are answered by the dispatcher from registry state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

ALL_DEVICES = "all"

_REQUIRED_DEVICE = "REQUIRED: ID of the device"


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


def _device(description: str = f"{_REQUIRED_DEVICE} to query") -> dict[str, Any]:
    return {"type": "string", "description": description}


def _limit(default: int, what: str) -> dict[str, Any]:
    return {
        "type": "number",
        "description": f"Maximum number of {what} to return (default: {default})",
        "default": default,
    }


def _tool(name: str, description: str, schema: dict[str, Any]) -> dict[str, Any]:
    return {"name": name, "description": description, "inputSchema": schema}


_WIRES_ITEMS = {"type": "array", "items": {"type": "string"}}

TOOLS: list[dict[str, Any]] = [
    # ── Registry-level tools ──────────────────────────────────────
    _tool(
        "list_devices",
        "List all connected devices in the swarm. Devices can be any runtime "
        "(PageNodes, Rust, Go, etc.) that speaks the Ainura protocol. Returns IDs, "
        "types, and node lists. Use get_node_details to inspect specific node "
        "implementations.",
        _schema({
            "type": {"type": "string", "description": "Filter by device type (browser, electron, nodejs, embedded, rust, etc.)"},
            "node": {"type": "string", "description": 'Filter by devices that have this node type (e.g., "gpio-out", "http-request")'},
            "status": {"type": "string", "description": "Filter by status (online, offline, error)"},
        }),
    ),
    _tool(
        "get_device_details",
        "Get detailed information about a specific device including its node list, "
        "current flows, and state. Use get_node_details to understand how specific "
        "nodes work on this device.",
        _schema({"deviceId": _device("ID of the device to get details for")}, ["deviceId"]),
    ),
    _tool(
        "get_started",
        "Returns the integration guide, node catalog, and current flow state. Call "
        "WITHOUT deviceId to get an aggregated view of all connected devices and their "
        "available nodes (recommended first call). Call WITH deviceId to get full "
        "details for a specific device.",
        _schema({
            "deviceId": _device(
                "Optional: ID of a specific device. Omit for aggregated view across all devices."
            ),
        }),
    ),
    # ── Device-scoped tools: deviceId REQUIRED ────────────────────
    _tool(
        "get_flows",
        "Get the current flows, nodes, and config nodes from a specific device.",
        _schema({"deviceId": _device()}, ["deviceId"]),
    ),
    _tool(
        "create_flow",
        "Create a new flow tab on a specific device. Returns { success, flow: { id, "
        "type, label } } - use the returned id for adding nodes.",
        _schema({
            "deviceId": _device(f"{_REQUIRED_DEVICE} to create flow on"),
            "label": {"type": "string", "description": "Flow tab label"},
        }, ["deviceId", "label"]),
    ),
    _tool(
        "add_nodes",
        "Add multiple nodes to a flow on a specific device. IMPORTANT: Verify the "
        "device has the required node types via get_device_details before adding "
        "nodes. Each node has a tempId for wiring.",
        _schema({
            "deviceId": _device(
                f"{_REQUIRED_DEVICE} to add nodes to. Verify it has required node capabilities first."
            ),
            "flowId": {"type": "string", "description": "ID of the flow to add to (from get_flows or create_flow response)"},
            "nodes": {
                "type": "array",
                "description": "Array of nodes. Each node has tempId, type, x, y, wires, and "
                               "any node-specific properties at top level (e.g., payload, topic, func, broker).",
                "items": {
                    "type": "object",
                    "additionalProperties": True,
                    "properties": {
                        "tempId": {"type": "string", "description": 'Temporary ID for wiring (e.g., "a", "b", "inject1")'},
                        "type": {"type": "string", "description": 'Node type (e.g., "inject", "debug", "function")'},
                        "x": {"type": "number", "description": "X position on canvas"},
                        "y": {"type": "number", "description": "Y position on canvas"},
                        "name": {"type": "string", "description": "Optional display name"},
                        "wires": {
                            "type": "array",
                            "description": 'Wires using tempIds: [["b", "c"]] connects output 0 to nodes b and c',
                            "items": _WIRES_ITEMS,
                        },
                        "streamWires": {
                            "type": "array",
                            "description": "Audio stream wires using tempIds (same format as wires). For audio nodes only.",
                            "items": _WIRES_ITEMS,
                        },
                    },
                    "required": ["tempId", "type", "x", "y"],
                },
            },
        }, ["deviceId", "flowId", "nodes"]),
    ),
    _tool(
        "update_node",
        "Update a node's properties or position on a specific device.",
        _schema({
            "deviceId": _device(f"{_REQUIRED_DEVICE} containing the node"),
            "nodeId": {"type": "string", "description": "ID of the node to update"},
            "updates": {"type": "object", "description": "Properties to update (can include x, y, name, or config properties)"},
        }, ["deviceId", "nodeId", "updates"]),
    ),
    _tool(
        "delete_node",
        "Delete a node from a flow on a specific device.",
        _schema({
            "deviceId": _device(f"{_REQUIRED_DEVICE} containing the node"),
            "nodeId": {"type": "string", "description": "ID of the node to delete"},
        }, ["deviceId", "nodeId"]),
    ),
    _tool(
        "deploy",
        'Deploy the current flows to the runtime on a specific device. Use "all" for '
        "deviceId to deploy to all connected devices.",
        _schema({
            "deviceId": _device(
                f'{_REQUIRED_DEVICE} to deploy, or "all" to deploy to all connected devices'
            ),
        }, ["deviceId"]),
    ),
    _tool(
        "get_debug_output",
        "Get recent debug panel messages (newest first) from a specific device.",
        _schema({"deviceId": _device(), "limit": _limit(10, "messages")}, ["deviceId"]),
    ),
    _tool(
        "get_errors",
        "Get recent runtime errors from a specific device (newest first). Includes node "
        "information, error message, stack trace, and message ID for correlation.",
        _schema({"deviceId": _device(), "limit": _limit(10, "errors")}, ["deviceId"]),
    ),
    _tool(
        "get_logs",
        "Get recent logs from a specific device (UI, runtime, audio, etc.). Returns "
        "entries with timestamp (t), context (c), level (l), and message (m).",
        _schema({
            "deviceId": _device(),
            "limit": _limit(100, "logs"),
            "context": {"type": "string", "description": 'Filter by context (e.g., "ui", "runtime", "audio", "mcp", "worker")'},
            "level": {"type": "string", "description": 'Filter by level ("log", "warn", "error")'},
        }, ["deviceId"]),
    ),
    _tool(
        "clear_logs",
        "Clear all logs from a specific device's buffer.",
        _schema({"deviceId": _device(_REQUIRED_DEVICE)}, ["deviceId"]),
    ),
    _tool(
        "get_inject_nodes",
        "Get all inject nodes in the current flows on a specific device. Use this to "
        "find nodes you can trigger.",
        _schema({"deviceId": _device()}, ["deviceId"]),
    ),
    _tool(
        "inject_node",
        "Trigger an inject node with an optional payload on a specific device. Returns "
        "{ success, _msgid } where _msgid can be used to trace the message in debug "
        "output. The node must be deployed first.",
        _schema({
            "deviceId": _device(f"{_REQUIRED_DEVICE} containing the node"),
            "nodeId": {"type": "string", "description": "ID of the inject node to trigger"},
            "payload": {
                "description": "Optional payload to inject (string, number, boolean, or object). "
                               "If not provided, uses the node's configured payload.",
            },
        }, ["deviceId", "nodeId"]),
    ),
    _tool(
        "get_node_details",
        "Get full details for a specific node type on a specific device. IMPORTANT: "
        "Node implementations vary by device type - always check the target device's "
        "node details before using.",
        _schema({
            "deviceId": _device(
                f"{_REQUIRED_DEVICE}. Different device types have different node implementations."
            ),
            "type": {"type": "string", "description": 'Node type (e.g., "inject", "http request", "mqtt in")'},
        }, ["deviceId", "type"]),
    ),
    _tool(
        "trigger_node",
        "Send a message to ANY node's input on a specific device (not just inject "
        "nodes). Use this to trigger flows that start with non-inject nodes, or to send "
        "test messages mid-flow. Returns { success, _msgid, nodeType }.",
        _schema({
            "deviceId": _device(f"{_REQUIRED_DEVICE} containing the node"),
            "nodeId": {"type": "string", "description": "ID of the node to trigger"},
            "msg": {
                "type": "object",
                "description": "Message object to send. Can include payload, topic, and any other properties.",
                "additionalProperties": True,
            },
        }, ["deviceId", "nodeId"]),
    ),
    _tool(
        "clear_debug",
        "Clear all debug messages from a specific device's buffer. Useful before running "
        "a test to get a clean slate.",
        _schema({"deviceId": _device(_REQUIRED_DEVICE)}, ["deviceId"]),
    ),
    _tool(
        "clear_errors",
        "Clear all error messages from a specific device's buffer. Useful before running "
        "a test to get a clean slate.",
        _schema({"deviceId": _device(_REQUIRED_DEVICE)}, ["deviceId"]),
    ),
    _tool(
        "get_node_statuses",
        "Get the current status of all nodes on a specific device (connection states, "
        "ready indicators, etc.). Returns an object mapping node IDs to their status objects.",
        _schema({"deviceId": _device()}, ["deviceId"]),
    ),
    _tool(
        "get_canvas_svg",
        "Get the SVG content of the flow canvas from a specific device. Returns the "
        "visual representation of the current flow including nodes, wires, and their positions.",
        _schema({"deviceId": _device()}, ["deviceId"]),
    ),
    _tool(
        "get_mcp_messages",
        "Get messages from the MCP output queue on a specific device. Messages are sent "
        "by mcp-output nodes in flows. Returns and clears messages by default.",
        _schema({
            "deviceId": _device(),
            "limit": _limit(100, "messages"),
            "clear": {"type": "boolean", "description": "Clear returned messages from queue (default: true)", "default": True},
        }, ["deviceId"]),
    ),
    _tool(
        "send_mcp_message",
        'Send a message to mcp-input nodes on a specific device, or broadcast to all '
        'devices with "all".',
        _schema({
            "deviceId": _device(f'{_REQUIRED_DEVICE}, or "all" to broadcast to all devices'),
            "payload": {"description": "Message payload (string, number, boolean, or object)"},
            "topic": {"type": "string", "description": "Optional topic for filtering (mcp-input nodes can filter by topic)", "default": ""},
        }, ["deviceId", "payload"]),
    ),
    # ── Custom tools: AI-defined tools backed by flows ────────────
    _tool(
        "get_custom_tools",
        "List custom tools defined by tool-in nodes on a device. These are AI-callable "
        "tools backed by PageNodes flows.",
        _schema({"deviceId": _device()}, ["deviceId"]),
    ),
    _tool(
        "use_custom_tool",
        "Execute a custom tool defined by a tool-in node. The tool runs a flow and "
        "returns the result from the tool-out node.",
        _schema({
            "deviceId": _device(_REQUIRED_DEVICE),
            "name": {"type": "string", "description": "Name of the custom tool to execute"},
            "message": {"type": "object", "description": 'Message object with payload property (e.g. { payload: "hello", topic: "greeting" })'},
        }, ["deviceId", "name"]),
    ),
]


# ── Routing ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ToolRoute:
    """How a device-scoped tool becomes one remote call."""

    method: str
    params: Callable[[dict[str, Any]], list[Any]] = lambda args: []
    broadcast_key: str | None = None
    #: Result goes under ``"result"`` instead of being merged with ``deviceId``.
    nest_result: bool = False
    #: Argument that must be present and non-empty.
    requires: str | None = None


def _or(value: Any, default: Any) -> Any:
    return value if value else default


ROUTES: dict[str, ToolRoute] = {
    "get_flows": ToolRoute("getFlows"),
    "create_flow": ToolRoute("createFlow", lambda a: [a.get("label")]),
    "add_nodes": ToolRoute("addNodes", lambda a: [a.get("flowId"), a.get("nodes")]),
    "update_node": ToolRoute("updateNode", lambda a: [a.get("nodeId"), a.get("updates")]),
    "delete_node": ToolRoute("deleteNode", lambda a: [a.get("nodeId")]),
    "deploy": ToolRoute("deploy", broadcast_key="deployedTo"),
    "get_debug_output": ToolRoute("getDebugOutput", lambda a: [_or(a.get("limit"), 10)]),
    "get_errors": ToolRoute("getErrors", lambda a: [_or(a.get("limit"), 10)]),
    "get_logs": ToolRoute(
        "getLogs",
        lambda a: [_or(a.get("limit"), 100), _or(a.get("context"), None), _or(a.get("level"), None)],
    ),
    "clear_logs": ToolRoute("clearLogs"),
    "get_inject_nodes": ToolRoute("getInjectNodes"),
    "inject_node": ToolRoute("inject", lambda a: [a.get("nodeId"), a.get("payload")]),
    "get_node_details": ToolRoute("getNodeDetails", lambda a: [a.get("type")]),
    "trigger_node": ToolRoute("trigger", lambda a: [a.get("nodeId"), a.get("msg")]),
    "clear_debug": ToolRoute("clearDebug"),
    "clear_errors": ToolRoute("clearErrors"),
    "get_node_statuses": ToolRoute("getNodeStatuses"),
    "get_canvas_svg": ToolRoute("getCanvasSvg"),
    "get_mcp_messages": ToolRoute(
        "getMessages", lambda a: [_or(a.get("limit"), 100), a.get("clear") is not False]
    ),
    "send_mcp_message": ToolRoute(
        "sendMessage", lambda a: [a.get("payload"), _or(a.get("topic"), "")], broadcast_key="sentTo"
    ),
    "get_custom_tools": ToolRoute("getCustomTools"),
    "use_custom_tool": ToolRoute(
        "useCustomTool",
        lambda a: [a.get("name"), _or(a.get("message"), {})],
        nest_result=True,
        requires="name",
    ),
}
