"""MCP protocol layer: tool table, dispatcher and the device RPC bridge."""
