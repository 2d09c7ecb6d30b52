"""Tests for the device registry and capability aggregator."""

from __future__ import annotations

import asyncio
import random
import re

import pytest

from ainura.devices.aggregator import CapabilityAggregator
from ainura.devices.models import (
    CatalogEntry,
    ConnectedDevice,
    DeviceInfo,
    DeviceRecord,
    DeviceStatus,
)
from ainura.devices.registry import DeviceRegistry, RegistrationError


CATALOG_A = [
    {"type": "inject", "category": "common", "description": "Inject a message"},
    {"type": "debug", "category": "common", "description": "Debug output"},
    {"type": "gpio-out", "category": "hardware", "description": "Drive a pin"},
]
CATALOG_B = [
    {"type": "inject", "category": "common", "description": "Other inject"},
    {"type": "webaudio", "category": "audio", "description": "Web Audio"},
]


def _expected_aggregate(registry: DeviceRegistry) -> dict:
    fresh = CapabilityAggregator()
    fresh.rebuild(registry.snapshot())
    return fresh.by_category()


# ── Registration ──────────────────────────────────────────────────


class TestRegister:
    @pytest.mark.asyncio
    async def test_caller_supplied_id(self, registry, fake_peer):
        device_id = await registry.register(
            {"id": "pi-kitchen", "type": "embedded", "name": "Kitchen Pi", "nodes": ["gpio-out"]},
            fake_peer(),
        )
        assert device_id == "pi-kitchen"
        rec = registry.lookup("pi-kitchen").record
        assert rec.type == "embedded"
        assert rec.name == "Kitchen Pi"
        assert rec.nodes == ["gpio-out"]
        assert rec.status == DeviceStatus.ONLINE
        assert rec.connected_at == rec.last_seen

    @pytest.mark.asyncio
    async def test_generated_id_and_defaults(self, registry, fake_peer):
        device_id = await registry.register({}, fake_peer())
        assert re.fullmatch(r"device-[0-9a-f]{8}", device_id)
        rec = registry.lookup(device_id).record
        assert rec.type == "unknown"
        assert rec.name == f"Device {device_id[:8]}"
        assert rec.description == ""
        assert rec.meta == {}

    @pytest.mark.asyncio
    async def test_none_payload_is_accepted(self, registry, fake_peer):
        device_id = await registry.register(None, fake_peer())
        assert device_id in registry

    @pytest.mark.asyncio
    async def test_empty_id_is_generated(self, registry, fake_peer):
        device_id = await registry.register({"id": ""}, fake_peer())
        assert device_id.startswith("device-")

    @pytest.mark.asyncio
    async def test_many_generated_ids_are_distinct(self, registry, fake_peer):
        ids = [await registry.register({}, fake_peer()) for _ in range(150)]
        assert len(set(ids)) == 150
        assert len(registry) == 150

    @pytest.mark.asyncio
    async def test_nodes_from_capabilities(self, registry, fake_peer):
        device_id = await registry.register(
            {"capabilities": {"nodes": ["inject", "debug", "inject"]}}, fake_peer()
        )
        assert registry.lookup(device_id).record.nodes == ["inject", "debug"]

    @pytest.mark.asyncio
    async def test_invalid_payload_raises(self, registry, fake_peer):
        with pytest.raises(RegistrationError):
            await registry.register({"nodes": "inject"}, fake_peer())
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_accepts_validated_model(self, registry, fake_peer):
        info = DeviceInfo(id="dev-1", type="rust", nodes=["a"])
        assert await registry.register(info, fake_peer()) == "dev-1"

    @pytest.mark.asyncio
    async def test_reregister_replaces(self, registry, fake_peer):
        first, second = fake_peer(), fake_peer()
        await registry.register({"id": "dup", "name": "old"}, first)
        await registry.register({"id": "dup", "name": "new"}, second)
        assert len(registry) == 1
        assert registry.lookup("dup").peer is second
        assert registry.lookup("dup").record.name == "new"


class TestLegacyRegister:
    @pytest.mark.asyncio
    async def test_ignores_caller_id(self, registry, fake_peer):
        device_id = await registry.register_legacy(
            {"id": "wanted", "name": "Tab", "url": "http://x"}, fake_peer()
        )
        assert device_id != "wanted"
        rec = registry.lookup(device_id).record
        assert rec.type == "browser"
        assert rec.name == "Tab"
        assert rec.url == "http://x"
        assert rec.description == "Legacy PageNodes client"
        assert rec.nodes == []
        assert rec.meta == {"legacy": True}

    @pytest.mark.asyncio
    async def test_default_name(self, registry, fake_peer):
        device_id = await registry.register_legacy(None, fake_peer())
        assert registry.lookup(device_id).record.name == f"Browser {device_id[:8]}"

    @pytest.mark.asyncio
    async def test_no_catalog_fetch(self, registry, fake_peer, settle):
        peer = fake_peer()
        await registry.register_legacy({}, peer)
        await settle()
        assert peer.calls == []


# ── Catalog fetch ─────────────────────────────────────────────────


class TestCatalogFetch:
    @pytest.mark.asyncio
    async def test_catalog_loaded(self, registry, add_device):
        device_id, peer = await add_device("a", catalog=CATALOG_A)
        assert peer.methods_called() == ["getState"]
        assert [e.type for e in registry.lookup(device_id).catalog] == ["inject", "debug", "gpio-out"]
        assert registry.aggregator.get("gpio-out").devices == ["a"]

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_device(self, registry, add_device):
        device_id, _ = await add_device("a", responses={"getState": RuntimeError("no state")})
        assert device_id in registry
        assert registry.lookup(device_id).catalog == []
        assert registry.catalog() == {}

    @pytest.mark.asyncio
    async def test_missing_catalog_is_empty(self, registry, add_device):
        device_id, _ = await add_device("a", responses={"getState": {"flows": []}})
        assert registry.lookup(device_id).catalog == []

    @pytest.mark.asyncio
    async def test_device_gone_before_catalog_arrives(self, registry, add_device, settle):
        device_id, _ = await add_device(
            "slow", catalog=CATALOG_A, delays={"getState": 0.01}
        )
        registry.unregister(device_id)
        await asyncio.sleep(0.02)
        await settle()
        assert registry.aggregator.get("inject") is None

    @pytest.mark.asyncio
    async def test_entries_without_type_skipped(self, registry, add_device):
        device_id, _ = await add_device(
            "a", catalog=[{"category": "x"}, "junk", {"type": "debug"}]
        )
        catalog = registry.lookup(device_id).catalog
        assert catalog == [CatalogEntry(type="debug", category="unknown", description="")]


# ── Queries ───────────────────────────────────────────────────────


class TestLookupAndList:
    @pytest.mark.asyncio
    async def test_lookup_never_falls_back(self, registry, add_device):
        await add_device("only")
        assert registry.lookup(None) is None
        assert registry.lookup("") is None
        assert registry.lookup("other") is None
        assert registry.lookup("only") is not None

    @pytest.mark.asyncio
    async def test_filters_are_conjunctive(self, registry, add_device):
        await add_device("b1", type="browser", nodes=["inject", "webaudio"])
        await add_device("b2", type="browser", nodes=["inject"])
        await add_device("e1", type="embedded", nodes=["inject", "gpio-out"])

        assert {d.id for d in registry.list()} == {"b1", "b2", "e1"}
        assert {d.id for d in registry.list(type="browser")} == {"b1", "b2"}
        assert {d.id for d in registry.list(node="inject")} == {"b1", "b2", "e1"}
        assert {d.id for d in registry.list(type="browser", node="webaudio")} == {"b1"}
        assert registry.list(type="embedded", node="webaudio") == []
        assert len(registry.list(status="online")) == 3
        assert registry.list(status="offline") == []

    @pytest.mark.asyncio
    async def test_node_filter_is_name_membership(self, registry, add_device):
        await add_device("d", nodes=["http request"])
        assert registry.list(node="http-request") == []

    @pytest.mark.asyncio
    async def test_touch_updates_last_seen(self, registry, add_device):
        device_id, _ = await add_device("d")
        rec = registry.lookup(device_id).record
        rec.last_seen = "2000-01-01T00:00:00Z"
        registry.touch(device_id)
        assert rec.last_seen != "2000-01-01T00:00:00Z"
        registry.touch("missing")

    @pytest.mark.asyncio
    async def test_status_line(self, registry, add_device):
        assert "No devices connected" in registry.status_line()
        await add_device("d", name="Desk", type="electron")
        assert registry.status_line() == "[Devices: ● 1 connected - Desk (electron)]"


# ── Unregister + aggregate consistency ────────────────────────────


class TestUnregister:
    @pytest.mark.asyncio
    async def test_removes_and_rebuilds(self, registry, add_device):
        await add_device("a", catalog=CATALOG_A)
        await add_device("b", catalog=CATALOG_B)
        assert registry.aggregator.get("inject").devices == ["a", "b"]

        assert registry.unregister("a") is True
        assert "a" not in registry
        assert registry.aggregator.get("inject").devices == ["b"]
        assert registry.aggregator.get("gpio-out") is None

    @pytest.mark.asyncio
    async def test_unknown_id(self, registry):
        assert registry.unregister("ghost") is False

    @pytest.mark.asyncio
    async def test_stale_peer_cannot_evict_successor(self, registry, fake_peer):
        old, new = fake_peer(), fake_peer()
        await registry.register({"id": "x"}, old)
        await registry.register({"id": "x"}, new)
        assert registry.unregister("x", old) is False
        assert registry.lookup("x").peer is new
        assert registry.unregister("x", new) is True

    @pytest.mark.asyncio
    async def test_random_sequences_match_fresh_rebuild(self, registry, add_device):
        rng = random.Random(7)
        types = [f"node-{i}" for i in range(12)]
        live: list[str] = []
        for step in range(60):
            if live and rng.random() < 0.4:
                registry.unregister(live.pop(rng.randrange(len(live))))
            else:
                catalog = [
                    {"type": t, "category": f"cat-{t[-1]}", "description": f"{t}@{step}"}
                    for t in rng.sample(types, rng.randint(0, 5))
                ]
                device_id, _ = await add_device(catalog=catalog)
                live.append(device_id)

            assert registry.catalog() == _expected_aggregate(registry)
            live_ids = set(live)
            for entry in registry.aggregator.entries():
                assert set(entry.devices) <= live_ids
                assert len(entry.devices) == len(set(entry.devices))


class TestAggregator:
    def test_first_occurrence_wins_and_grouping(self, fake_peer):
        def device(device_id, catalog):
            return ConnectedDevice(
                record=DeviceRecord(id=device_id, type="t", name=device_id),
                peer=fake_peer(),
                catalog=[CatalogEntry.from_raw(c) for c in catalog],
            )

        agg = CapabilityAggregator()
        agg.rebuild([device("a", CATALOG_A), device("b", CATALOG_B)])

        inject = agg.get("inject")
        assert inject.description == "Inject a message"
        assert inject.devices == ["a", "b"]
        grouped = agg.by_category()
        assert set(grouped) == {"common", "hardware", "audio"}
        assert {"type": "webaudio", "description": "Web Audio", "devices": ["b"]} in grouped["audio"]

        agg.rebuild([])
        assert agg.entries() == []
        assert agg.by_category() == {}
