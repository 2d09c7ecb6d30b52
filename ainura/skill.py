"""Render a SKILL.md document describing every tool as a plain HTTP call.

Served at ``GET /generate_skill_definition`` so agents without MCP support
can drive devices through ``POST /func/{tool}`` with curl.
"""

from __future__ import annotations

import json
from typing import Any

_EXAMPLE_VALUES: dict[str, Any] = {
    "number": 0,
    "boolean": True,
    "array": [],
    "object": {},
}

_HEADER = """---
name: pagenodes
description: "Control PageNodes visual programming flows - create nodes, wire them together, deploy, and trigger. Manage IoT devices, audio systems, and automation flows."
metadata: {{"moltbot":{{"requires":{{"bins":["curl"]}}}}}}
---

# PageNodes Skill

Control PageNodes visual programming flows via HTTP. Create nodes, wire them together, deploy, and trigger flows. Manage IoT devices, audio systems, and automation.

## Configuration

Set the PageNodes MCP server URL (default: {base_url}):

```bash
export PAGENODES_URL="{base_url}"
```

## Available Functions

All functions are called via HTTP POST to `$PAGENODES_URL/func/{{function_name}}` with a JSON body.

"""

_FOOTER = """## Workflow

1. Call `list_devices` to see connected PageNodes instances
2. Use the deviceId in subsequent calls
3. Use `get_flows` to see existing flows and nodes
4. Use `add_nodes` to create new nodes with wiring
5. Call `deploy` to activate changes
6. Use `inject_node` or `trigger_node` to run flows
7. Check `get_debug_output` for results

## Notes

- All responses are JSON
- On error, response contains `isError: true` and error message in `content`
- deviceId is required for most operations - get it from `list_devices`
"""


def _example_body(properties: dict[str, Any]) -> dict[str, Any]:
    body = {}
    for name, schema in properties.items():
        body[name] = _EXAMPLE_VALUES.get(schema.get("type"), f"<{name}>")
    return body


def _params_doc(properties: dict[str, Any], required: list[str]) -> str:
    lines = []
    for name, schema in properties.items():
        kind = schema.get("type", "any")
        if name in required:
            kind += ", required"
        lines.append(f"- **{name}** ({kind}): {schema.get('description', '')}")
    return "\n".join(lines)


def render_skill_markdown(tools: list[dict[str, Any]], base_url: str) -> str:
    parts = [_HEADER.format(base_url=base_url.rstrip("/"))]
    for tool in tools:
        schema = tool.get("inputSchema") or {}
        props = schema.get("properties") or {}
        body = json.dumps(_example_body(props), separators=(",", ":"))
        parts.append(
            f"### {tool['name']}\n\n"
            f"{tool['description']}\n\n"
            f"{_params_doc(props, schema.get('required') or []) or '_No parameters_'}\n\n"
            "```bash\n"
            f"curl -X POST $PAGENODES_URL/func/{tool['name']} "
            f"-H \"Content-Type: application/json\" -d '{body}'\n"
            "```\n\n"
        )
    parts.append(_FOOTER)
    return "".join(parts)
