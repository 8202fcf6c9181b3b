"""
irobot.models — Typed dataclasses and enums for iRobot protocol objects.

All dataclasses use Python's ``dataclasses`` module; credential and command
objects carry ``to_store`` / ``to_dict`` helpers for the store and wire format.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import enum
import time
from typing import Any

from .const import (
    CAPABILITY_BATTERY,
    CAPABILITY_LID_CLOSED,
    CAPABILITY_MOP_STATE,
    CAPABILITY_TANK_FULL,
    CAPABILITY_TANK_PRESENT,
    CAPABILITY_VACUUM_STATE,
    CATEGORY_MOP,
    CATEGORY_VACUUM,
    COMMAND_DOCK,
    COMMAND_INITIATOR,
    COMMAND_START,
    COMMAND_STOP,
    FAMILY_BRAAVA,
    MOP_SKU_PREFIX,
)

# ---------------------------------------------------------------------------
# Normalized state
# ---------------------------------------------------------------------------


class NormalizedState(enum.StrEnum):
    """Operational state exposed to the host, independent of vendor vocabulary."""

    STOPPED = "stopped"
    CLEANING = "cleaning"
    SPOT_CLEANING = "spot_cleaning"
    DOCKED = "docked"
    CHARGING = "charging"


class AdapterState(enum.StrEnum):
    """Lifecycle of a :class:`~irobot.device.RobotDevice`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    REMOVED = "removed"


class ConnectionEvent(enum.StrEnum):
    """Events emitted by :class:`~irobot.mqtt.RobotConnection`."""

    CONNECTED = "connected"
    """Session accepted by the robot; commands can be published."""

    OFFLINE = "offline"
    """Underlying transport dropped."""

    CLOSED = "closed"
    """Session closed by us."""

    ERROR = "error"
    """Transport-level failure (refused, bad credentials, TLS error)."""

    STATE = "state"
    """Debounced telemetry snapshot (``data`` is the snapshot dict)."""


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DiscoveredRobot:
    """
    A robot that answered a discovery broadcast.

    Instances are immutable snapshots; the discovery registry replaces them
    on every announcement.
    """

    identifier: str
    """Lower-case MAC address; stable across IP changes."""

    address: str
    """IPv4 address the robot announced."""

    name: str = ""
    """User-assigned robot name (``robotname``)."""

    credential_hint: str = ""
    """Hostname suffix: the robot BLID, used as the MQTT username."""

    family: str = ""
    """Hostname prefix (``Roomba``, ``iRobot`` or ``Braava``)."""

    sku: str = ""
    """Model SKU (e.g. ``"R980020"``, ``"m611020"``)."""

    last_seen: float = field(default_factory=time.monotonic)
    """``time.monotonic()`` of the announcement."""

    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    """Full announcement payload."""

    @property
    def category(self) -> str:
        """``"mop"`` for Braava models, ``"vacuum"`` otherwise."""
        if self.family == FAMILY_BRAAVA or self.sku.lower().startswith(MOP_SKU_PREFIX):
            return CATEGORY_MOP
        return CATEGORY_VACUUM

    def is_stale(self, max_age: float, now: float | None = None) -> bool:
        """True if the robot has not announced itself for more than *max_age* seconds."""
        now = time.monotonic() if now is None else now
        return now - self.last_seen > max_age


# ---------------------------------------------------------------------------
# Pairing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PairingSecret:
    """Credentials retrieved during pairing; hand to the host store, then drop."""

    identifier: str
    username: str
    password: str = field(repr=False)

    def to_store(self) -> dict[str, str]:
        """Return the ``auth`` store value."""
        return {"username": self.username, "password": self.password}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass
class CommandEnvelope:
    """``{command, time, initiator}`` payload published on the ``cmd`` topic."""

    command: str
    time: int = field(default_factory=lambda: int(time.time()))
    initiator: str = COMMAND_INITIATOR

    def to_dict(self) -> dict[str, Any]:
        return {"command": self.command, "time": self.time, "initiator": self.initiator}


# ---------------------------------------------------------------------------
# Device profiles
# ---------------------------------------------------------------------------


_STATE_COMMANDS: dict[NormalizedState, str] = {
    NormalizedState.CLEANING: COMMAND_START,
    NormalizedState.DOCKED: COMMAND_DOCK,
    NormalizedState.CHARGING: COMMAND_DOCK,
    NormalizedState.STOPPED: COMMAND_STOP,
}


@dataclass(frozen=True)
class DeviceProfile:
    """
    Per-family description of how a robot is exposed to the host.

    ``state_commands`` maps each host-settable state to the command that
    reaches it; any state missing from the map is rejected.
    ``reported_states`` lists the states the host capability can display.
    """

    category: str
    state_capability: str
    capabilities: tuple[str, ...]
    state_commands: dict[NormalizedState, str] = field(
        default_factory=lambda: dict(_STATE_COMMANDS)
    )
    reported_states: frozenset[NormalizedState] = frozenset(NormalizedState)

    def command_for(self, value: str) -> str | None:
        """Return the command for a requested state, or ``None`` if unsupported."""
        try:
            state = NormalizedState(value)
        except ValueError:
            return None
        return self.state_commands.get(state)

    @classmethod
    def for_category(cls, category: str) -> DeviceProfile:
        return MOP_PROFILE if category == CATEGORY_MOP else VACUUM_PROFILE


VACUUM_PROFILE = DeviceProfile(
    category=CATEGORY_VACUUM,
    state_capability=CAPABILITY_VACUUM_STATE,
    capabilities=(CAPABILITY_VACUUM_STATE, CAPABILITY_BATTERY),
)

MOP_PROFILE = DeviceProfile(
    category=CATEGORY_MOP,
    state_capability=CAPABILITY_MOP_STATE,
    capabilities=(
        CAPABILITY_MOP_STATE,
        CAPABILITY_BATTERY,
        CAPABILITY_TANK_FULL,
        CAPABILITY_TANK_PRESENT,
        CAPABILITY_LID_CLOSED,
    ),
    reported_states=frozenset(NormalizedState) - {NormalizedState.SPOT_CLEANING},
)
