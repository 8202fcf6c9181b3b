"""Tests for irobot.host — MemoryHost."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from irobot.host import MemoryHost


@pytest.mark.asyncio
class TestMemoryHost:
    async def test_store_roundtrip(self):
        host = MemoryHost(data={"mac": "aa"})
        await host.set_store_value("ip", "192.0.2.1")
        assert host.get_store_value("ip") == "192.0.2.1"
        assert host.get_store() == {"ip": "192.0.2.1"}
        assert host.get_store_value("auth") is None

    async def test_data_is_copy(self):
        host = MemoryHost(data={"mac": "aa"})
        host.get_data()["mac"] = "bb"
        assert host.get_data() == {"mac": "aa"}

    async def test_unknown_capability_rejected(self):
        host = MemoryHost()
        with pytest.raises(KeyError):
            await host.set_capability_value("bin_full", True)

    async def test_add_capability_then_set(self):
        on_change = MagicMock()
        host = MemoryHost(on_change=on_change)
        await host.add_capability("bin_full")
        assert host.has_capability("bin_full")
        assert host.get_capability_value("bin_full") is None
        await host.set_capability_value("bin_full", True)
        await host.set_capability_value("bin_full", True)
        on_change.assert_called_once_with("bin_full", True)

    async def test_trigger_calls_listener(self):
        host = MemoryHost(capabilities=["vacuumcleaner_state"])
        handler = AsyncMock(return_value=None)
        host.register_capability_listener("vacuumcleaner_state", handler)
        await host.trigger("vacuumcleaner_state", "docked")
        handler.assert_awaited_once_with("docked")

    async def test_trigger_without_listener(self):
        host = MemoryHost()
        with pytest.raises(KeyError):
            await host.trigger("vacuumcleaner_state", "docked")

    async def test_availability(self):
        host = MemoryHost()
        await host.set_unavailable("offline")
        assert host.available is False
        assert host.unavailable_reason == "offline"
        await host.set_available()
        assert host.available is True
        assert host.unavailable_reason is None
