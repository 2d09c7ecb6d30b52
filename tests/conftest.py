"""pytest configuration for Ainura MCP tests."""

import asyncio
from typing import Any

import pytest

from ainura.devices.registry import DeviceRegistry


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakePeer:
    """In-memory stand-in for :class:`ainura.devices.peer.DevicePeer`.

    ``responses`` maps a remote method to a value, an exception instance
    (raised), or a callable taking the call params.
    """

    def __init__(self, responses: dict[str, Any] | None = None, delays: dict[str, float] | None = None):
        self.responses = responses or {}
        self.delays = delays or {}
        self.calls: list[tuple[str, tuple]] = []
        self.label = "fake"

    async def call(self, method: str, *params: Any) -> Any:
        self.calls.append((method, params))
        delay = self.delays.get(method)
        if delay:
            await asyncio.sleep(delay)
        value = self.responses.get(method, {} if method == "getState" else {"success": True})
        if isinstance(value, BaseException):
            raise value
        if callable(value):
            return value(*params)
        return value

    def methods_called(self) -> list[str]:
        return [m for m, _ in self.calls]


async def settle() -> None:
    """Let background catalog fetches run to completion."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def add_device(registry):
    """Async helper: register a device backed by a :class:`FakePeer`."""

    async def _add(device_id=None, catalog=None, responses=None, delays=None, **info):
        responses = dict(responses or {})
        if catalog is not None:
            responses.setdefault("getState", {"nodeCatalog": catalog})
        peer = FakePeer(responses, delays)
        payload = dict(info)
        if device_id:
            payload["id"] = device_id
        registered = await registry.register(payload, peer)
        await settle()
        return registered, peer

    return _add


@pytest.fixture
def fake_peer():
    """The :class:`FakePeer` class, for tests that build peers directly."""
    return FakePeer


@pytest.fixture(name="settle")
def settle_fixture():
    return settle
