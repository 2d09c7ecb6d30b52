"""Device data model.

A device is any runtime that speaks the Ainura protocol: PageNodes in a
browser, Electron, Node.js, Rust, embedded boards. It reports *which*
node types it has; node details (properties, constraints, behaviour) are
queried from the device itself, since two devices may ship nodes with the
same name but completely different implementations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from ainura.devices.peer import DevicePeer


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    ERROR = "error"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ── Registration payloads ─────────────────────────────────────────


class DeviceInfo(BaseModel):
    """Payload of a ``registerDevice`` call.

    Capability names may arrive as ``nodes`` or nested under
    ``capabilities.nodes``; both collapse into :attr:`nodes`.
    """

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str = "unknown"
    name: str | None = None
    description: str | None = None
    url: str | None = None
    nodes: list[str] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if data is None:
            return {}
        if not isinstance(data, dict):
            return data
        data = {k: v for k, v in data.items() if v is not None}
        if not data.get("nodes"):
            caps = data.get("capabilities")
            if isinstance(caps, dict) and caps.get("nodes"):
                data["nodes"] = caps["nodes"]
        if data.get("id") == "":
            data.pop("id")
        if data.get("type") == "":
            data.pop("type")
        return data


class LegacyClientInfo(BaseModel):
    """Payload of the legacy ``registerClient`` call (browser PageNodes)."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if data is None:
            return {}
        return data


# ── Registry records ──────────────────────────────────────────────


@dataclass
class DeviceRecord:
    """Registration metadata for one connected device."""

    id: str
    type: str
    name: str
    description: str = ""
    url: str | None = None
    nodes: list[str] = field(default_factory=list)
    status: DeviceStatus = DeviceStatus.ONLINE
    connected_at: str = field(default_factory=utc_now_iso)
    last_seen: str = field(default_factory=utc_now_iso)
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "url": self.url,
            "nodes": list(self.nodes),
            "status": self.status.value,
            "connectedAt": self.connected_at,
            "lastSeen": self.last_seen,
            "meta": dict(self.meta),
        }

    def summary(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "type": self.type}


@dataclass
class CatalogEntry:
    """One node type as reported by a device's ``getState().nodeCatalog``."""

    type: str
    category: str = "unknown"
    description: str = ""

    @classmethod
    def from_raw(cls, raw: Any) -> CatalogEntry | None:
        if not isinstance(raw, dict) or not raw.get("type"):
            return None
        return cls(
            type=str(raw["type"]),
            category=raw.get("category") or "unknown",
            description=raw.get("description") or "",
        )


@dataclass
class ConnectedDevice:
    """A registry slot: the record, its live peer and its cached catalog."""

    record: DeviceRecord
    peer: DevicePeer
    catalog: list[CatalogEntry] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.record.id
