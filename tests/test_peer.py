"""Tests for the symmetric JSON-RPC device peer."""

from __future__ import annotations

import asyncio
import json

import pytest

from ainura.devices.peer import (
    METHOD_NOT_FOUND,
    DevicePeer,
    PeerClosedError,
    RemoteCallError,
)
from ainura.devices.registry import DeviceRegistry
from ainura.devices.websocket import DeviceConnection


class FakeTransport:
    """Collects frames the peer sends."""

    def __init__(self):
        self.sent: list[dict] = []

    async def send_text(self, data: str) -> None:
        self.sent.append(json.loads(data))


async def _next_frame(transport: FakeTransport, index: int) -> dict:
    for _ in range(50):
        if len(transport.sent) > index:
            return transport.sent[index]
        await asyncio.sleep(0)
    raise AssertionError(f"no frame #{index} sent")


class TestOutboundCalls:
    @pytest.mark.asyncio
    async def test_call_resolves_with_result(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)

        task = asyncio.create_task(peer.call("getLogs", 100, None, "error"))
        frame = await _next_frame(transport, 0)
        assert frame == {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getLogs",
            "params": [100, None, "error"],
        }
        assert peer.pending_calls == 1

        await peer.feed(json.dumps({"jsonrpc": "2.0", "id": 1, "result": {"logs": []}}))
        assert await task == {"logs": []}
        assert peer.pending_calls == 0

    @pytest.mark.asyncio
    async def test_ids_are_unique_per_call(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)
        first = asyncio.create_task(peer.call("deploy"))
        second = asyncio.create_task(peer.call("deploy"))
        a = await _next_frame(transport, 0)
        b = await _next_frame(transport, 1)
        assert a["id"] != b["id"]

        # Answer out of order.
        await peer.feed(json.dumps({"id": b["id"], "result": "second"}))
        await peer.feed(json.dumps({"id": a["id"], "result": "first"}))
        assert await first == "first"
        assert await second == "second"

    @pytest.mark.asyncio
    async def test_error_response_raises(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)
        task = asyncio.create_task(peer.call("deploy"))
        frame = await _next_frame(transport, 0)
        await peer.feed(json.dumps({
            "jsonrpc": "2.0",
            "id": frame["id"],
            "error": {"code": -32000, "message": "deploy failed"},
        }))
        with pytest.raises(RemoteCallError, match="deploy failed") as info:
            await task
        assert info.value.code == -32000

    @pytest.mark.asyncio
    async def test_close_fails_pending_calls(self):
        transport = FakeTransport()
        peer = DevicePeer(transport, label="dev-1")
        task = asyncio.create_task(peer.call("getFlows"))
        await _next_frame(transport, 0)

        peer.close()
        with pytest.raises(PeerClosedError, match="dev-1"):
            await task
        assert peer.closed

    @pytest.mark.asyncio
    async def test_call_after_close_raises(self):
        peer = DevicePeer(FakeTransport())
        peer.close()
        with pytest.raises(PeerClosedError):
            await peer.call("getState")

    @pytest.mark.asyncio
    async def test_unknown_response_id_ignored(self):
        peer = DevicePeer(FakeTransport())
        await peer.feed(json.dumps({"id": 99, "result": 1}))
        assert peer.pending_calls == 0


class TestInboundRequests:
    @pytest.mark.asyncio
    async def test_handler_result_sent_back(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)

        async def register(info):
            return {"success": True, "deviceId": info["id"]}

        peer.add_handler("registerDevice", register)
        await peer.feed(json.dumps({
            "jsonrpc": "2.0", "id": 5, "method": "registerDevice", "params": [{"id": "d1"}],
        }))
        frame = await _next_frame(transport, 0)
        assert frame == {"jsonrpc": "2.0", "id": 5, "result": {"success": True, "deviceId": "d1"}}

    @pytest.mark.asyncio
    async def test_object_params_passed_as_single_arg(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)
        seen = []

        async def handler(info):
            seen.append(info)
            return None

        peer.add_handler("registerClient", handler)
        await peer.feed(json.dumps({"id": 1, "method": "registerClient", "params": {"name": "x"}}))
        await _next_frame(transport, 0)
        assert seen == [{"name": "x"}]

    @pytest.mark.asyncio
    async def test_unknown_method(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)
        await peer.feed(json.dumps({"id": 3, "method": "selfDestruct", "params": []}))
        frame = await _next_frame(transport, 0)
        assert frame["error"]["code"] == METHOD_NOT_FOUND
        assert "selfDestruct" in frame["error"]["message"]

    @pytest.mark.asyncio
    async def test_handler_error_becomes_error_response(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)

        async def broken(*_):
            raise ValueError("bad payload")

        peer.add_handler("registerDevice", broken)
        await peer.feed(json.dumps({"id": 2, "method": "registerDevice", "params": [{}]}))
        frame = await _next_frame(transport, 0)
        assert frame["id"] == 2
        assert frame["error"]["message"] == "bad payload"

    @pytest.mark.asyncio
    async def test_handler_may_call_back_without_deadlock(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)

        async def register(info):
            state = await peer.call("getState")
            return {"nodes": len(state["nodeCatalog"])}

        peer.add_handler("registerDevice", register)
        await peer.feed(json.dumps({"id": 1, "method": "registerDevice", "params": [{}]}))

        outbound = await _next_frame(transport, 0)
        assert outbound["method"] == "getState"
        await peer.feed(json.dumps({"id": outbound["id"], "result": {"nodeCatalog": [1, 2]}}))

        reply = await _next_frame(transport, 1)
        assert reply == {"jsonrpc": "2.0", "id": 1, "result": {"nodes": 2}}

    @pytest.mark.asyncio
    async def test_notification_gets_no_reply(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)
        called = asyncio.Event()

        async def log(*_):
            called.set()

        peer.add_handler("log", log)
        await peer.feed(json.dumps({"method": "log", "params": ["hi"]}))
        await asyncio.wait_for(called.wait(), 1)
        await asyncio.sleep(0)
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_malformed_frames_ignored(self):
        transport = FakeTransport()
        peer = DevicePeer(transport)
        seen = []
        peer.on_message = lambda: seen.append(1)
        await peer.feed("{not json")
        await peer.feed("[1, 2]")
        await peer.feed(json.dumps({"jsonrpc": "2.0"}))
        assert transport.sent == []
        assert seen == [1]


class TestDeviceConnection:
    @pytest.mark.asyncio
    async def test_disconnect_fails_pending_calls_and_unregisters(self, caplog):
        registry = DeviceRegistry()
        transport = FakeTransport()
        conn = DeviceConnection(registry, DevicePeer(transport))
        assert await conn.register_device({"id": "pi"}) == {"success": True, "deviceId": "pi"}

        # The catalog fetch is still waiting on getState.
        await _next_frame(transport, 0)
        task = asyncio.create_task(conn.peer.call("getFlows"))
        await _next_frame(transport, 1)
        assert conn.peer.pending_calls == 2

        with caplog.at_level("WARNING", logger="ainura.devices.websocket"):
            conn.disconnect()
        assert "2 calls pending" in caplog.text
        with pytest.raises(PeerClosedError):
            await task
        assert "pi" not in registry
