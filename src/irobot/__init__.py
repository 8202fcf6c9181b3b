"""
irobot — Python library for local control of iRobot Roomba and Braava robots.

Robots announce themselves over UDP, hand out their local password once after
a button press, and then speak MQTT over TLS directly on the LAN. No cloud
account is needed after pairing.

Quick start (discovery + pairing)::

    import asyncio
    from irobot import DiscoveryService, wait_for_secret

    async def main():
        async with DiscoveryService() as discovery:
            await asyncio.sleep(10)
            robot = discovery.robots()[0]
            # Hold HOME until the robot chimes, then:
            secret = await wait_for_secret(robot.address, robot.identifier,
                                           robot.credential_hint)
            print(secret.to_store())

    asyncio.run(main())

Quick start (one session)::

    from irobot import RobotConnection

    async def main():
        conn = RobotConnection("50:14:79:aa:bb:cc", "192.0.2.10", blid, password)
        conn.add_listener(lambda event, data: print(event, data))
        await conn.connect()
        await conn.wait_connected()
        await conn.dock()
        await conn.disconnect()

Hub integration: wrap each paired robot in a :class:`RobotDevice` bound to a
:class:`~irobot.host.Host`; it keeps the session alive across IP changes and
drops, and mirrors telemetry into the host's capabilities.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

from ._codec import decode, encode
from .device import RobotDevice
from .discovery import DiscoveryService
from .error_reporting import init_error_reporting
from .exceptions import (
    InvalidHostError,
    InvalidPasswordError,
    InvalidUsernameError,
    IRobotCapabilityError,
    IRobotCommandError,
    IRobotConnectionError,
    IRobotError,
    IRobotNotConnectedError,
    IRobotProtocolError,
    IRobotTimeoutError,
    IRobotValidationError,
    PairingTimeoutError,
    RobotBusyError,
)
from .host import Host, MemoryHost
from .models import (
    MOP_PROFILE,
    VACUUM_PROFILE,
    AdapterState,
    CommandEnvelope,
    ConnectionEvent,
    DeviceProfile,
    DiscoveredRobot,
    NormalizedState,
    PairingSecret,
)
from .mqtt import RobotConnection
from .pairing import fetch_secret, wait_for_secret
from .telemetry import TelemetryDebouncer, derive_capabilities, map_mission_state

__all__ = [  # noqa: RUF022 grouped by category, alphabetical within each
    # Version
    "__version__",
    # Codec helpers
    "decode",
    "encode",
    # Error reporting
    "init_error_reporting",
    # Discovery
    "DiscoveredRobot",
    "DiscoveryService",
    # Pairing
    "PairingSecret",
    "fetch_secret",
    "wait_for_secret",
    # Telemetry
    "TelemetryDebouncer",
    "derive_capabilities",
    "map_mission_state",
    # Models (alphabetical)
    "AdapterState",
    "CommandEnvelope",
    "ConnectionEvent",
    "DeviceProfile",
    "MOP_PROFILE",
    "NormalizedState",
    "VACUUM_PROFILE",
    # Session and device
    "Host",
    "MemoryHost",
    "RobotConnection",
    "RobotDevice",
    # Exceptions (alphabetical)
    "IRobotCapabilityError",
    "IRobotCommandError",
    "IRobotConnectionError",
    "IRobotError",
    "IRobotNotConnectedError",
    "IRobotProtocolError",
    "IRobotTimeoutError",
    "IRobotValidationError",
    "InvalidHostError",
    "InvalidPasswordError",
    "InvalidUsernameError",
    "PairingTimeoutError",
    "RobotBusyError",
]

# Opt-in error reporting: active only when IROBOT_SENTRY_DSN or SENTRY_DSN is set
init_error_reporting()
