"""
irobot.device — RobotDevice: one physical robot bound to the hub.

Ties together the discovery registry, the MQTT session and the host's
capability contract for a single robot. Every input (announcements, session
events, capability requests) goes through one asyncio queue and is handled by
one worker task, so events for the same robot are processed strictly in
arrival order.

Lifecycle::

    disconnected ──announcement──▶ connecting ──connected──▶ connected
         ▲                              │                        │
         │                     offline / error           offline / error
         │                              ▼                        ▼
         └───────────────────────── reconnecting ◀───────────────┘
                                        │ next announcement → connecting

    any state ──remove()──▶ removed (terminal)

A new session is opened when the robot announces itself while not connected,
when its address changed, or after ``CLIENT_RESET_COUNTER`` announcements
since the last (re)connection. The three triggers are independent. A watchdog
additionally replays the latest registry entry every
``RECONNECT_CHECK_INTERVAL`` seconds while the device is not connected.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from typing import TYPE_CHECKING, Any

from .const import (
    ALL_COMMANDS,
    CAPABILITY_MOP_STATE,
    CAPABILITY_VACUUM_STATE,
    CATEGORY_MOP,
    CATEGORY_VACUUM,
    CLIENT_RESET_COUNTER,
    CONDITION_CAPABILITIES,
    QUIET_PERIOD,
    RECONNECT_CHECK_INTERVAL,
    STORE_AUTH,
    STORE_CATEGORY,
    STORE_IP,
    UNAVAILABLE_OFFLINE,
)
from .exceptions import (
    IRobotCapabilityError,
    IRobotConnectionError,
    IRobotError,
    IRobotNotConnectedError,
    IRobotValidationError,
)
from .models import MOP_PROFILE, VACUUM_PROFILE, AdapterState, ConnectionEvent, DeviceProfile
from .mqtt import RobotConnection
from .telemetry import derive_capabilities, map_mission_state

if TYPE_CHECKING:
    from collections.abc import Callable

    from .discovery import DiscoveryService
    from .host import Host
    from .models import DiscoveredRobot

logger = logging.getLogger(__name__)

_DISCOVERED = "discovered"
_CONNECTION = "connection"
_REQUEST = "request"


def _known_profile(
    host: Host, discovery: DiscoveryService, identifier: str
) -> DeviceProfile | None:
    """
    Work out the robot family without waiting for an announcement.

    Checked in order: a ``category`` persisted in the store or device data,
    the state capability the hub declared for the device, then the discovery
    registry. Returns ``None`` when none of them knows yet.
    """
    for source in (host.get_store(), host.get_data()):
        category = source.get(STORE_CATEGORY)
        if category in (CATEGORY_MOP, CATEGORY_VACUUM):
            return DeviceProfile.for_category(category)
    if host.has_capability(CAPABILITY_MOP_STATE):
        return MOP_PROFILE
    if host.has_capability(CAPABILITY_VACUUM_STATE):
        return VACUUM_PROFILE
    known = discovery.get(identifier)
    return DeviceProfile.for_category(known.category) if known else None


class RobotDevice:
    """
    Per-robot adapter between the hub and the robot's local MQTT session.

    Example::

        discovery = DiscoveryService()
        await discovery.start()
        device = RobotDevice(host, discovery)
        await device.start()
        ...
        await device.set_state("cleaning")
        print(device.condition("bin_full"))
        await device.remove()

    Args:
        host:               Hub-side device handle (see :class:`~irobot.host.Host`).
        discovery:          Shared, already started discovery service.
        profile:            Capability profile. When omitted it comes from the
                            persisted ``category``, the hub's declared state
                            capability or the registry; failing all three it is
                            settled by the robot's first announcement.
        connection_factory: Builds sessions; ``RobotConnection`` by default.
        reset_counter:      Announcements before a forced session refresh.
        check_interval:     Seconds between watchdog checks.
        quiet_period:       Telemetry debounce window passed to each session.

    Raises:
        IRobotValidationError: If the host data has no ``mac``.
    """

    def __init__(
        self,
        host: Host,
        discovery: DiscoveryService,
        profile: DeviceProfile | None = None,
        *,
        connection_factory: Callable[..., RobotConnection] = RobotConnection,
        reset_counter: int = CLIENT_RESET_COUNTER,
        check_interval: float = RECONNECT_CHECK_INTERVAL,
        quiet_period: float = QUIET_PERIOD,
    ) -> None:
        mac = host.get_data().get("mac")
        if not isinstance(mac, str) or not mac:
            raise IRobotValidationError("missing mac property in device data")
        self._identifier = mac.lower()
        self._host = host
        self._discovery = discovery
        self._profile = profile or _known_profile(host, discovery, self._identifier)
        self._connection_factory = connection_factory
        self._reset_counter = reset_counter
        self._check_interval = check_interval
        self._quiet_period = quiet_period

        self._state = AdapterState.DISCONNECTED
        self._session: RobotConnection | None = None
        self._announcements = 0
        self._queue: asyncio.Queue[tuple[Any, ...]] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._watchdog_task: asyncio.Task[None] | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def identifier(self) -> str:
        """Lower-case MAC of the robot."""
        return self._identifier

    @property
    def state(self) -> AdapterState:
        """Current lifecycle state."""
        return self._state

    @property
    def profile(self) -> DeviceProfile | None:
        """Capability profile; ``None`` until the robot family is known."""
        return self._profile

    @property
    def session(self) -> RobotConnection | None:
        """The live (or opening) session, if any."""
        return self._session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Migrate legacy data, bind to the host and discovery, and start processing."""
        if self._worker is not None or self._state is AdapterState.REMOVED:
            return
        await self.migrate_data_to_store()
        if self._profile is None:
            self._profile = _known_profile(self._host, self._discovery, self._identifier)
        if self._profile is not None:
            await self._bind_profile(self._profile)
        await self._set_unavailable()

        loop = asyncio.get_running_loop()
        self._worker = loop.create_task(self._run())
        self._watchdog_task = loop.create_task(self._watchdog())
        self._unsubscribe = self._discovery.subscribe(self._identifier, self._on_discovered)

        known = self._discovery.get(self._identifier)
        if known is not None:
            self._on_discovered(known)
        logger.info(
            "Device %s started (%s)",
            self._identifier,
            self._profile.category if self._profile else "family unknown",
        )

    async def remove(self) -> None:
        """Tear everything down. Terminal: the device cannot be started again."""
        if self._state is AdapterState.REMOVED:
            return
        self._state = AdapterState.REMOVED
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in (self._watchdog_task, self._worker):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._watchdog_task = None
        self._worker = None
        self._fail_pending_requests()
        await self._teardown()
        logger.info("Device %s removed", self._identifier)

    async def migrate_data_to_store(self) -> None:
        """Move ``ip`` and ``auth`` from the immutable device data to the store, once."""
        data = self._host.get_data()
        store = self._host.get_store()
        for key in (STORE_IP, STORE_AUTH):
            if key in data and key not in store:
                try:
                    await self._host.set_store_value(key, data[key])
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "Failed to migrate %s to store (id=%s): %s", key, self._identifier, exc
                    )

    # ------------------------------------------------------------------
    # Host-facing API
    # ------------------------------------------------------------------

    async def set_state(self, value: str) -> None:
        """
        Capability listener: drive the robot towards *value*.

        Raises:
            IRobotCapabilityError:   *value* cannot be commanded (e.g. spot_cleaning).
            IRobotNotConnectedError: No connected session.
            IRobotCommandError:      The publish failed.
        """
        await self._request("state", value)

    async def command(self, name: str) -> None:
        """Send a raw ``start``/``pause``/``stop``/``resume``/``dock`` command."""
        await self._request("command", name)

    def condition(self, name: str) -> bool | None:
        """
        Flow-condition query: current value of an auxiliary boolean capability.

        Returns ``None`` while the value is not yet known.

        Raises:
            KeyError: If *name* is not an auxiliary capability.
        """
        if name not in CONDITION_CAPABILITIES:
            raise KeyError(name)
        if not self._host.has_capability(name):
            return None
        value = self._host.get_capability_value(name)
        return None if value is None else bool(value)

    async def _request(self, kind: str, value: str) -> None:
        if self._state is AdapterState.REMOVED or self._worker is None:
            raise IRobotNotConnectedError(f"Device {self._identifier} is not running")
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((_REQUEST, kind, value, future))
        await future

    def _fail_pending_requests(self) -> None:
        while not self._queue.empty():
            item = self._queue.get_nowait()
            self._queue.task_done()
            if item[0] == _REQUEST and not item[3].done():
                item[3].set_exception(
                    IRobotNotConnectedError(f"Device {self._identifier} was removed")
                )

    # ------------------------------------------------------------------
    # Event intake (sync, may be called from any callback on the loop)
    # ------------------------------------------------------------------

    def _on_discovered(self, robot: DiscoveredRobot) -> None:
        if self._state is not AdapterState.REMOVED:
            self._queue.put_nowait((_DISCOVERED, robot))

    def _on_connection_event(
        self, session: RobotConnection, event: ConnectionEvent, data: Any
    ) -> None:
        if self._state is not AdapterState.REMOVED:
            self._queue.put_nowait((_CONNECTION, session, event, data))

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item[0] == _DISCOVERED:
                    await self._handle_discovered(item[1])
                elif item[0] == _CONNECTION:
                    await self._handle_connection(item[1], item[2], item[3])
                elif item[0] == _REQUEST:
                    await self._handle_request(item[1], item[2], item[3])
            except asyncio.CancelledError:
                if item[0] == _REQUEST and not item[3].done():
                    item[3].cancel()
                raise
            except Exception:
                logger.exception("Device %s failed handling %s", self._identifier, item[0])
            finally:
                self._queue.task_done()

    async def _watchdog(self) -> None:
        while True:
            await asyncio.sleep(self._check_interval)
            if self._state not in (AdapterState.DISCONNECTED, AdapterState.RECONNECTING):
                continue
            known = self._discovery.get(self._identifier)
            if known is None:
                logger.debug("Device %s not connected and not in registry", self._identifier)
                continue
            logger.info("Connection was lost, retrying %s at %s", self._identifier, known.address)
            self._on_discovered(known)

    async def _handle_discovered(self, robot: DiscoveredRobot) -> None:
        if self._profile is None:
            self._profile = DeviceProfile.for_category(robot.category)
            await self._bind_profile(self._profile)
        self._announcements += 1

        ip_changed = robot.address != self._host.get_store_value(STORE_IP)
        if ip_changed:
            logger.info("Robot %s address changed to %s", self._identifier, robot.address)
            try:
                await self._host.set_store_value(STORE_IP, robot.address)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to store address (id=%s): %s", self._identifier, exc)

        not_connected = self._state in (AdapterState.DISCONNECTED, AdapterState.RECONNECTING)
        refresh_due = self._announcements >= self._reset_counter
        if not_connected or ip_changed or refresh_due:
            logger.debug(
                "Reconnecting %s (not_connected=%s ip_changed=%s refresh_due=%s)",
                self._identifier,
                not_connected,
                ip_changed,
                refresh_due,
            )
            await self._connect(robot.address)

    async def _connect(self, address: str) -> None:
        self._announcements = 0
        self._state = AdapterState.CONNECTING
        await self._set_unavailable()
        await self._teardown()

        auth = self._host.get_store_value(STORE_AUTH) or {}
        try:
            session = self._connection_factory(
                self._identifier,
                address,
                auth.get("username"),
                auth.get("password"),
                quiet_period=self._quiet_period,
            )
        except IRobotValidationError as exc:
            logger.error("Cannot connect to %s: %s", self._identifier, exc)
            self._state = AdapterState.DISCONNECTED
            return

        session.add_listener(functools.partial(self._on_connection_event, session))
        self._session = session
        logger.info("Connecting to %s at %s", self._identifier, address)
        try:
            await session.connect()
        except IRobotConnectionError as exc:
            logger.warning("Connection to %s failed: %s", self._identifier, exc)
            await self._teardown()
            self._state = AdapterState.RECONNECTING

    async def _teardown(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await session.disconnect()
        except (IRobotError, OSError) as exc:
            logger.warning("Error closing session to %s: %s", self._identifier, exc)

    async def _handle_connection(
        self, session: RobotConnection, event: ConnectionEvent, data: Any
    ) -> None:
        if session is not self._session:
            logger.debug("Ignoring %s from superseded session (id=%s)", event, self._identifier)
            return
        if event is ConnectionEvent.CONNECTED:
            self._state = AdapterState.CONNECTED
            logger.info("Connected to %s at %s", self._identifier, session.host)
            try:
                await self._host.set_available()
            except Exception as exc:  # noqa: BLE001
                logger.error("Could not mark %s available: %s", self._identifier, exc)
        elif event is ConnectionEvent.STATE:
            await self._apply_state(data)
        else:
            if event is ConnectionEvent.ERROR:
                logger.error("Error in connection to %s: %s", self._identifier, data)
            else:
                logger.warning("Lost connection with %s: %s", self._identifier, event)
            self._state = AdapterState.RECONNECTING
            await self._set_unavailable()
            await self._teardown()

    async def _handle_request(self, kind: str, value: str, future: asyncio.Future[None]) -> None:
        if future.done():
            return
        profile = self._profile
        try:
            if kind == "state":
                if profile is None:
                    raise IRobotNotConnectedError(f"Robot {self._identifier} has not been seen yet")
                command = profile.command_for(value)
                if command is None:
                    raise IRobotCapabilityError(
                        f"Cannot set {profile.state_capability} to {value!r}", value=value
                    )
            else:
                if value not in ALL_COMMANDS:
                    raise IRobotCapabilityError(f"Unknown command {value!r}", value=value)
                command = value
            session = self._session
            if self._state is not AdapterState.CONNECTED or session is None:
                raise IRobotNotConnectedError(f"Robot {self._identifier} is not connected")
            await session.send(command)
        except Exception as exc:  # noqa: BLE001
            logger.error("Request %s=%r for %s failed: %s", kind, value, self._identifier, exc)
            if not future.done():
                future.set_exception(exc)
            return
        if not future.done():
            future.set_result(None)

    # ------------------------------------------------------------------
    # Host writes
    # ------------------------------------------------------------------

    async def _apply_state(self, snapshot: dict[str, Any]) -> None:
        profile = self._profile
        if profile is None:
            return
        for name, value in derive_capabilities(snapshot).items():
            await self._write_capability(name, value)

        state = map_mission_state(snapshot)
        if state is None:
            return
        if state not in profile.reported_states:
            logger.debug("State %s not exposed for %s", state, profile.category)
            return
        logger.debug("Robot %s state → %s", self._identifier, state)
        await self._write_capability(profile.state_capability, state.value)

    async def _bind_profile(self, profile: DeviceProfile) -> None:
        for name in profile.capabilities:
            await self._ensure_capability(name)
        self._host.register_capability_listener(profile.state_capability, self.set_state)
        if self._host.get_store_value(STORE_CATEGORY) != profile.category:
            try:
                await self._host.set_store_value(STORE_CATEGORY, profile.category)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to store category (id=%s): %s", self._identifier, exc)
        logger.debug("Device %s bound as %s", self._identifier, profile.category)

    async def _ensure_capability(self, name: str) -> bool:
        if self._host.has_capability(name):
            return True
        try:
            await self._host.add_capability(name)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not add capability %s (id=%s): %s", name, self._identifier, exc)
            return False
        logger.info("Added capability %s to %s", name, self._identifier)
        return True

    async def _write_capability(self, name: str, value: Any) -> None:
        if not await self._ensure_capability(name):
            return
        try:
            await self._host.set_capability_value(name, value)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not set capability value %r for %s: %s", value, name, exc)

    async def _set_unavailable(self) -> None:
        try:
            await self._host.set_unavailable(UNAVAILABLE_OFFLINE)
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not mark %s unavailable: %s", self._identifier, exc)
