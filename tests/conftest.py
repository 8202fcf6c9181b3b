"""
pytest fixtures, fake sessions and a mock paho client for python-irobot tests.
"""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from irobot.const import CAPABILITY_BATTERY, CAPABILITY_VACUUM_STATE
from irobot.discovery import DiscoveryService
from irobot.exceptions import IRobotNotConnectedError
from irobot.host import MemoryHost

# ---------------------------------------------------------------------------
# Fake session
# ---------------------------------------------------------------------------


class FakeConnection:
    """Stand-in for :class:`irobot.mqtt.RobotConnection` with manual event injection."""

    def __init__(
        self,
        identifier: str,
        host: str,
        username: str,
        password: str,
        **kwargs: Any,
    ) -> None:
        self.identifier = identifier
        self.host = host
        self.username = username
        self.password = password
        self.kwargs = kwargs
        self.listeners: list[Any] = []
        self.sent: list[str] = []
        self.connect_calls = 0
        self.connect_error: Exception | None = None
        self.closed = False

    @property
    def is_closed(self) -> bool:
        return self.closed

    def add_listener(self, callback: Any) -> None:
        self.listeners.append(callback)

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error

    async def disconnect(self) -> None:
        self.closed = True
        self.listeners.clear()

    async def send(self, command: str) -> dict[str, Any]:
        if self.closed:
            raise IRobotNotConnectedError("closed")
        self.sent.append(command)
        return {"command": command, "time": 0, "initiator": "localApp"}

    def emit(self, event: Any, data: Any = None) -> None:
        for listener in list(self.listeners):
            listener(event, data)


class ConnectionFactory:
    """Callable building :class:`FakeConnection` objects and remembering them."""

    def __init__(self) -> None:
        self.created: list[FakeConnection] = []
        self.connect_error: Exception | None = None

    def __call__(self, *args: Any, **kwargs: Any) -> FakeConnection:
        conn = FakeConnection(*args, **kwargs)
        conn.connect_error = self.connect_error
        self.created.append(conn)
        return conn

    @property
    def latest(self) -> FakeConnection:
        return self.created[-1]

    def live(self) -> list[FakeConnection]:
        return [c for c in self.created if not c.closed]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_mac() -> str:
    """Robot MAC as announced (upper-case)."""
    return "50:14:79:AA:BB:CC"


@pytest.fixture
def sample_identifier(sample_mac: str) -> str:
    return sample_mac.lower()


@pytest.fixture
def sample_blid() -> str:
    return "3143C00000000000"


@pytest.fixture
def sample_announcement(sample_mac: str, sample_blid: str) -> dict[str, Any]:
    """Realistic Roomba 980 discovery answer."""
    return {
        "ver": "3",
        "hostname": f"Roomba-{sample_blid}",
        "robotname": "Kitchen",
        "ip": "192.0.2.10",
        "mac": sample_mac,
        "sw": "v2.4.16-126",
        "sku": "R980020",
        "nc": 0,
        "proto": "mqtt",
        "cap": {"pose": 1, "ota": 2, "multiPass": 2, "carpetBoost": 1},
    }


@pytest.fixture
def braava_announcement() -> dict[str, Any]:
    """Braava jet m6 discovery answer."""
    return {
        "ver": "3",
        "hostname": "Braava-9F3AC00000000000",
        "robotname": "Mop",
        "ip": "192.0.2.20",
        "mac": "50:14:79:11:22:33",
        "sku": "m611020",
        "proto": "mqtt",
    }


@pytest.fixture
def discovery() -> DiscoveryService:
    """A discovery service that is never bound; feed it with ``on_announcement``."""
    return DiscoveryService(resolve_mac=lambda ip: "")


@pytest.fixture
def memory_host(sample_mac: str, sample_blid: str) -> MemoryHost:
    """Host for a paired vacuum whose credentials are already in the store."""
    return MemoryHost(
        data={"mac": sample_mac},
        store={
            "ip": "192.0.2.10",
            "auth": {"username": sample_blid, "password": ":1:1486937829:gOizXpQ4lcdSoD1S"},
        },
        capabilities=[CAPABILITY_VACUUM_STATE, CAPABILITY_BATTERY],
    )


@pytest.fixture
def connection_factory() -> ConnectionFactory:
    return ConnectionFactory()


@pytest.fixture
def mock_paho_client():
    """
    Return a MagicMock that pretends to be a paho-mqtt Client.

    Auto-fires the ``on_connect`` callback with rc=0 when ``connect()`` is
    called, matching the paho v2 signature
    ``(client, userdata, flags, reason_code, props)``.
    """
    with patch("paho.mqtt.client.Client") as MockClient:  # noqa: N806
        mock_instance = MagicMock()
        MockClient.return_value = mock_instance

        def connect_side_effect(host, port, **kwargs):
            if mock_instance.on_connect:
                mock_instance.on_connect(mock_instance, None, None, 0, None)

        mock_instance.connect.side_effect = connect_side_effect
        mock_instance.loop_start = MagicMock()
        mock_instance.loop_stop = MagicMock()
        mock_instance.disconnect = MagicMock()
        mock_instance.subscribe = MagicMock()
        mock_instance.publish = MagicMock(return_value=MagicMock(rc=0))
        mock_instance.MockClient = MockClient

        yield mock_instance
