"""RPC bridge — relays one resolved tool call to one device.

Pure pass-through: no retry, no caching, no reordering. Remote failures
propagate as exceptions; the dispatcher turns them into the shared
tool-result error envelope.
"""

from __future__ import annotations

import logging
from typing import Any

from ainura.devices.models import ConnectedDevice
from ainura.mcp.tools import ToolRoute

logger = logging.getLogger(__name__)


def tag_result(device_id: str, result: Any, nest: bool = False) -> dict[str, Any]:
    """Stamp *result* with the device that produced it.

    Mappings are merged (``deviceId`` wins the key); anything else is
    nested under ``"result"``.
    """
    if not nest and isinstance(result, dict):
        tagged = {"deviceId": device_id, **result}
        tagged["deviceId"] = device_id
        return tagged
    return {"deviceId": device_id, "result": result}


class RpcBridge:
    """Maps ``(device, route, args)`` to exactly one remote call."""

    async def call(
        self,
        device: ConnectedDevice,
        route: ToolRoute,
        args: dict[str, Any],
    ) -> dict[str, Any]:
        params = route.params(args)
        logger.debug("→ %s.%s(%d params)", device.id, route.method, len(params))
        result = await device.peer.call(route.method, *params)
        return tag_result(device.id, result, route.nest_result)
