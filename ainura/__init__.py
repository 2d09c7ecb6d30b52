"""Ainura MCP — multi-device orchestration over the Model Context Protocol.

Devices (any runtime that speaks the Ainura protocol: browser PageNodes,
Electron, Node.js, embedded boards, ...) connect over a WebSocket and
register themselves. AI agents talk MCP (JSON-RPC 2.0) over stdio, plain
HTTP POST or SSE, and every device-scoped tool call is relayed to exactly
the device the agent named.

Quickstart::

    python -m ainura --port 7778
    # or, spawned by an MCP client
    python -m ainura --stdio
"""

__version__ = "0.5.0"
