"""Device registry — the authoritative store of connected devices.

All mutation funnels through :meth:`DeviceRegistry.register`,
:meth:`DeviceRegistry.register_legacy` and :meth:`DeviceRegistry.unregister`,
and each one rebuilds the aggregated catalog before returning. The server
runs on a single asyncio loop, so no lock is needed: nothing awaits between
a mutation and its rebuild.

There is no heartbeat. A device stays registered until its transport
closes; ``last_seen`` is informational only.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from pydantic import ValidationError

from ainura.devices.aggregator import CapabilityAggregator
from ainura.devices.models import (
    CatalogEntry,
    ConnectedDevice,
    DeviceInfo,
    DeviceRecord,
    LegacyClientInfo,
    utc_now_iso,
)
from ainura.devices.peer import INVALID_PARAMS, DevicePeer

logger = logging.getLogger(__name__)


class RegistrationError(Exception):
    """Raised when a device registration payload is malformed."""

    code = INVALID_PARAMS


def generate_device_id() -> str:
    return f"device-{uuid.uuid4().hex[:8]}"


class DeviceRegistry:
    """Connected devices keyed by id, plus their aggregated node catalog."""

    def __init__(self) -> None:
        self._devices: dict[str, ConnectedDevice] = {}
        self.aggregator = CapabilityAggregator()
        self._catalog_tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    # ── Mutation ───────────────────────────────────────────────────

    async def register(self, info: DeviceInfo | dict | None, peer: DevicePeer) -> str:
        """Register a device and kick off a background catalog fetch.

        Honors a caller-supplied ``id``; generates one otherwise. A live
        device with the same id is replaced.
        """
        if not isinstance(info, DeviceInfo):
            try:
                info = DeviceInfo.model_validate(info)
            except ValidationError as exc:
                raise RegistrationError(f"Invalid device registration: {exc}") from exc

        device_id = info.id or self._new_id()
        now = utc_now_iso()
        record = DeviceRecord(
            id=device_id,
            type=info.type,
            name=info.name or f"Device {device_id[:8]}",
            description=info.description or "",
            url=info.url,
            nodes=list(dict.fromkeys(info.nodes)),
            meta=info.meta,
            connected_at=now,
            last_seen=now,
        )
        self._insert(ConnectedDevice(record=record, peer=peer))
        logger.info(
            "Device registered: %s (%s, %d nodes)",
            record.name, record.type, len(record.nodes),
        )
        logger.info(self.status_line())

        task = asyncio.get_running_loop().create_task(self.fetch_catalog(device_id))
        self._catalog_tasks.add(task)
        task.add_done_callback(self._catalog_tasks.discard)
        return device_id

    async def register_legacy(
        self, info: LegacyClientInfo | dict | None, peer: DevicePeer
    ) -> str:
        """Register an old-style browser client.

        Legacy clients never choose their id and send no node list.
        """
        if not isinstance(info, LegacyClientInfo):
            try:
                info = LegacyClientInfo.model_validate(info)
            except ValidationError as exc:
                raise RegistrationError(f"Invalid client registration: {exc}") from exc

        device_id = self._new_id()
        now = utc_now_iso()
        record = DeviceRecord(
            id=device_id,
            type="browser",
            name=info.name or f"Browser {device_id[:8]}",
            description="Legacy PageNodes client",
            url=info.url,
            meta={"legacy": True},
            connected_at=now,
            last_seen=now,
        )
        self._insert(ConnectedDevice(record=record, peer=peer))
        logger.info("Device connected (legacy): %s", record.name)
        logger.info(self.status_line())
        return device_id

    def unregister(self, device_id: str, peer: DevicePeer | None = None) -> bool:
        """Remove *device_id*.

        When *peer* is given the slot is only removed if that peer still
        owns it, so a stale connection closing cannot evict its successor.
        """
        device = self._devices.get(device_id)
        if device is None:
            return False
        if peer is not None and device.peer is not peer:
            return False
        del self._devices[device_id]
        self.aggregator.rebuild(self._devices.values())
        logger.info("Device disconnected: %s", device.record.name)
        logger.info(self.status_line())
        return True

    def touch(self, device_id: str) -> None:
        device = self._devices.get(device_id)
        if device is not None:
            device.record.last_seen = utc_now_iso()

    async def fetch_catalog(self, device_id: str) -> None:
        """Best-effort fetch of the device's full node catalog.

        Failure is logged only; the device stays registered with an empty
        catalog.
        """
        device = self._devices.get(device_id)
        if device is None:
            return
        peer = device.peer
        try:
            state = await peer.call("getState")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not fetch node catalog for %s: %s", device_id, exc)
            return

        raw = state.get("nodeCatalog") if isinstance(state, dict) else None
        if not isinstance(raw, list):
            logger.debug("Device %s reported no node catalog", device_id)
            return

        # The device may have gone (or been replaced) while we waited.
        current = self._devices.get(device_id)
        if current is None or current.peer is not peer:
            return
        current.catalog = [e for e in map(CatalogEntry.from_raw, raw) if e is not None]
        self.aggregator.rebuild(self._devices.values())
        logger.info("Node catalog loaded for %s: %d node types", device_id, len(current.catalog))

    # ── Queries ────────────────────────────────────────────────────

    def lookup(self, device_id: str | None) -> ConnectedDevice | None:
        """Return the device with exactly this id; never a fallback."""
        if not device_id:
            return None
        return self._devices.get(device_id)

    def list(
        self,
        type: str | None = None,
        node: str | None = None,
        status: str | None = None,
    ) -> list[ConnectedDevice]:
        """Devices matching every given filter.

        *node* checks membership in the advertised node-name list only.
        """
        result = []
        for device in self._devices.values():
            rec = device.record
            if type and rec.type != type:
                continue
            if status and rec.status.value != status:
                continue
            if node and node not in rec.nodes:
                continue
            result.append(device)
        return result

    def snapshot(self) -> list[ConnectedDevice]:
        """Point-in-time copy of every registered device."""
        return list(self._devices.values())

    def catalog(self) -> dict[str, list[dict[str, Any]]]:
        return self.aggregator.by_category()

    def status_line(self) -> str:
        if not self._devices:
            return "[Devices: ○ No devices connected]"
        names = ", ".join(
            f"{d.record.name or d.id} ({d.record.type})" for d in self._devices.values()
        )
        return f"[Devices: ● {len(self._devices)} connected - {names}]"

    # ── Internal ───────────────────────────────────────────────────

    def _new_id(self) -> str:
        device_id = generate_device_id()
        while device_id in self._devices:
            device_id = generate_device_id()
        return device_id

    def _insert(self, device: ConnectedDevice) -> None:
        previous = self._devices.pop(device.id, None)
        if previous is not None:
            logger.warning("Device %s re-registered; replacing earlier connection", device.id)
        self._devices[device.id] = device
        self.aggregator.rebuild(self._devices.values())
