"""Broadcast coordinator — fan a tool call out to every device.

Used when a broadcastable tool is called with ``deviceId="all"``. The
device set is snapshotted once; every call is started before any is
awaited, and each outcome is collected independently so one failing or
slow device never hides another's result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from ainura.devices.models import ConnectedDevice
from ainura.mcp.tools import ToolRoute

logger = logging.getLogger(__name__)


class BroadcastCoordinator:
    async def broadcast(
        self,
        devices: Sequence[ConnectedDevice],
        route: ToolRoute,
        args: dict[str, Any],
    ) -> dict[str, Any]:
        """Call *route* on each of *devices*.

        Returns ``{<route.broadcast_key>: n, "results": [...]}`` with one
        entry per device: ``{"deviceId", "success": True, ...}`` or
        ``{"deviceId", "success": False, "error": message}``.
        """
        snapshot = list(devices)
        params = route.params(args)
        tasks = [
            asyncio.ensure_future(device.peer.call(route.method, *params))
            for device in snapshot
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results: list[dict[str, Any]] = []
        for device, outcome in zip(snapshot, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Broadcast %s failed on %s: %s", route.method, device.id, outcome)
                results.append({"deviceId": device.id, "success": False, "error": str(outcome)})
            else:
                entry = {"deviceId": device.id, "success": True}
                entry.update(outcome if isinstance(outcome, dict) else {"result": outcome})
                entry["deviceId"] = device.id
                results.append(entry)

        key = route.broadcast_key or "sentTo"
        return {key: len(results), "results": results}
