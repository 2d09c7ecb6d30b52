"""Aggregated node catalog across every connected device.

The aggregate is a projection, never patched in place: each rebuild
starts from nothing and walks the current registrations, so no entry
outlives the device that contributed it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from ainura.devices.models import ConnectedDevice


@dataclass
class AggregatedEntry:
    type: str
    category: str
    description: str
    devices: list[str] = field(default_factory=list)


class CapabilityAggregator:
    """Union of all devices' node catalogs, keyed by node type."""

    def __init__(self) -> None:
        self._entries: dict[str, AggregatedEntry] = {}

    def rebuild(self, devices: Iterable[ConnectedDevice]) -> None:
        """Replace the aggregate with a from-scratch union over *devices*.

        The first device to report a type fixes its category and
        description; every reporting device is appended once.
        """
        entries: dict[str, AggregatedEntry] = {}
        for device in devices:
            for node in device.catalog:
                entry = entries.get(node.type)
                if entry is None:
                    entries[node.type] = AggregatedEntry(
                        type=node.type,
                        category=node.category,
                        description=node.description,
                        devices=[device.id],
                    )
                elif device.id not in entry.devices:
                    entry.devices.append(device.id)
        # Swap in one assignment so readers never see a partial aggregate.
        self._entries = entries

    def get(self, node_type: str) -> AggregatedEntry | None:
        return self._entries.get(node_type)

    def entries(self) -> list[AggregatedEntry]:
        return list(self._entries.values())

    def by_category(self) -> dict[str, list[dict[str, Any]]]:
        """Discovery view: ``{category: [{type, description, devices}]}``."""
        grouped: dict[str, list[dict[str, Any]]] = {}
        for entry in self._entries.values():
            grouped.setdefault(entry.category or "other", []).append({
                "type": entry.type,
                "description": entry.description,
                "devices": list(entry.devices),
            })
        return grouped
