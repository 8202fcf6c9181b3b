"""
irobot.discovery — UDP broadcast discovery of iRobot robots on the LAN.

Every robot listens on UDP 5678 and answers the ASCII token ``irobotmcs``
with a JSON announcement broadcast on its own subnet, e.g.::

    {"ver": "3", "hostname": "Roomba-3143C00000000000", "robotname": "Kitchen",
     "ip": "192.0.2.10", "mac": "50:14:79:AA:BB:CC", "sw": "v2.4.16-126",
     "sku": "R980020", "nc": 0, "proto": "mqtt", "cap": {...}}

The hostname is ``<Family>-<BLID>``: the family (``Roomba``, ``iRobot``,
``Braava``) tells robots apart from other devices answering on the port, and
the BLID is the MQTT username. The router often echoes our own broadcast back
to us; that echo is ignored.

:class:`DiscoveryService` keeps a registry keyed by identifier (lower-case
MAC), notifies identifier-scoped subscribers on every announcement and drops
robots that stopped announcing. It is an explicitly owned object: create one,
``await start()``, hand it to the devices, ``await destroy()`` on shutdown.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from pathlib import Path
import socket
import subprocess
import time
from typing import TYPE_CHECKING, Any

from .const import (
    BROADCAST_ADDRESS,
    BROADCAST_INTERVAL,
    DISCOVERY_BIND_ADDRESS,
    DISCOVERY_MESSAGE,
    DISCOVERY_PORT,
    DISCOVERY_STALE_AFTER,
    KNOWN_FAMILIES,
    LISTENER_RESTART_DELAY,
)
from .exceptions import IRobotConnectionError
from .models import DiscoveredRobot

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

logger = logging.getLogger(__name__)


def _get_mac_for_ip(ip: str) -> str:
    """Return MAC address for IP from ARP table, or empty string if unavailable."""
    try:
        with Path("/proc/net/arp").open(encoding="utf-8") as f:
            lines = f.readlines()
        for line in lines[1:]:
            parts = line.split()
            if len(parts) >= 4 and parts[0] == ip:
                mac = parts[3]
                if mac != "00:00:00:00:00:00":
                    return mac
        return ""
    except OSError:
        pass
    try:
        out = subprocess.run(
            ["arp", "-n", ip],
            capture_output=True,
            check=False,
            text=True,
            timeout=2,
        )
        if out.returncode == 0 and out.stdout:
            for part in out.stdout.split():
                if ":" in part and len(part) == 17:
                    return part
    except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
        pass
    return ""


def _split_hostname(hostname: Any) -> tuple[str, str] | None:
    """Split ``<Family>-<BLID>``; ``None`` unless the family is a known robot family."""
    if not isinstance(hostname, str) or "-" not in hostname:
        return None
    family, _, hint = hostname.partition("-")
    if family not in KNOWN_FAMILIES or not hint:
        return None
    return family, hint


def _build_robot(
    payload: dict[str, Any],
    family: str,
    hint: str,
    address: str,
    mac: str,
    now: float | None,
) -> DiscoveredRobot:
    return DiscoveredRobot(
        identifier=mac.lower(),
        address=address,
        name=str(payload.get("robotname") or ""),
        credential_hint=hint,
        family=family,
        sku=str(payload.get("sku") or ""),
        last_seen=time.monotonic() if now is None else now,
        raw=payload,
    )


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Feeds datagrams and socket errors of the listener into the service."""

    def __init__(self, service: DiscoveryService) -> None:
        self._service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._service.on_announcement(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._service._on_socket_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            self._service._on_socket_error(exc)


class DiscoveryService:
    """
    Listens for robot announcements and periodically elicits them.

    Example::

        async with DiscoveryService() as discovery:
            unsubscribe = discovery.subscribe("50:14:79:aa:bb:cc", print)
            await asyncio.sleep(30)
            print(discovery.robots("mop"))
            unsubscribe()

    Args:
        port:              UDP port to bind and broadcast to (default 5678).
        bind_address:      Local address to bind (default all interfaces).
        broadcast_address: Destination of the discovery token.
        interval:          Seconds between broadcasts and registry sweeps.
        stale_after:       Seconds without announcement before a robot is dropped.
        resolve_mac:       ``ip -> mac`` fallback when an announcement has no ``mac``.
    """

    def __init__(
        self,
        port: int = DISCOVERY_PORT,
        bind_address: str = DISCOVERY_BIND_ADDRESS,
        broadcast_address: str = BROADCAST_ADDRESS,
        interval: float = BROADCAST_INTERVAL,
        stale_after: float = DISCOVERY_STALE_AFTER,
        resolve_mac: Callable[[str], str] = _get_mac_for_ip,
    ) -> None:
        self._port = port
        self._bind_address = bind_address
        self._broadcast_address = broadcast_address
        self._interval = interval
        self._stale_after = stale_after
        self._resolve_mac = resolve_mac

        self._robots: dict[str, DiscoveredRobot] = {}
        self._subscribers: dict[str, list[Callable[[DiscoveredRobot], None]]] = {}
        self._transport: asyncio.DatagramTransport | None = None
        self._periodic_task: asyncio.Task[None] | None = None
        self._restart_task: asyncio.Task[None] | None = None
        self._resolving: dict[str, asyncio.Task[None]] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        """True between :meth:`start` and :meth:`destroy`."""
        return self._running

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DiscoveryService:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.destroy()

    async def start(self) -> None:
        """
        Bind the UDP listener, broadcast once and start the periodic broadcast/sweep.

        Raises:
            IRobotConnectionError: If the discovery port cannot be bound.
        """
        if self._running:
            return
        try:
            await self._listen()
        except OSError as exc:
            raise IRobotConnectionError(
                f"Cannot bind discovery listener on {self._bind_address}:{self._port}: {exc}"
            ) from exc
        self._running = True
        self.broadcast()
        self._periodic_task = asyncio.get_running_loop().create_task(self._run_periodic())

    async def destroy(self) -> None:
        """Stop listening and broadcasting, forget every robot and subscriber."""
        self._running = False
        for task in (self._periodic_task, self._restart_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        for task in list(self._resolving.values()):
            task.cancel()
        self._resolving.clear()
        self._periodic_task = None
        self._restart_task = None
        self._close_transport()
        self._robots.clear()
        self._subscribers.clear()
        logger.info("Discovery stopped")

    async def _listen(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if hasattr(socket, "SO_REUSEPORT"):
                with contextlib.suppress(OSError):
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.bind((self._bind_address, self._port))
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _DiscoveryProtocol(self), sock=sock
        )
        self._transport = transport
        logger.info("Listening for robots on %s:%d", self._bind_address, self._port)

    def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()

    def _on_socket_error(self, exc: Exception) -> None:
        """Tear the listener down and re-create it shortly after."""
        logger.error("Discovery socket error: %s", exc)
        if not self._running or (self._restart_task and not self._restart_task.done()):
            return
        self._close_transport()
        self._restart_task = asyncio.get_running_loop().create_task(self._restart())

    async def _restart(self) -> None:
        while self._running:
            await asyncio.sleep(LISTENER_RESTART_DELAY)
            try:
                await self._listen()
            except OSError as exc:
                logger.error("Discovery listener restart failed: %s", exc)
                continue
            self.broadcast()
            return

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.broadcast()
            self.sweep()

    # ------------------------------------------------------------------
    # Wire
    # ------------------------------------------------------------------

    def broadcast(self) -> None:
        """Send the discovery token; robots on the segment answer with announcements."""
        if self._transport is None:
            logger.debug("Discovery broadcast skipped: listener not bound")
            return
        try:
            self._transport.sendto(DISCOVERY_MESSAGE, (self._broadcast_address, self._port))
            logger.debug("→ UDP %s:%d %r", self._broadcast_address, self._port, DISCOVERY_MESSAGE)
        except OSError as exc:
            logger.error("Discovery broadcast failed: %s", exc)

    def parse_announcement(
        self,
        data: bytes,
        addr: tuple[str, int] | None = None,
        now: float | None = None,
    ) -> DiscoveredRobot | None:
        """
        Parse one datagram into a :class:`DiscoveredRobot` without touching the registry.

        Returns ``None`` for our own echo, non-JSON data, JSON that is not an
        object, a hostname outside the known families, or when no identifier
        can be resolved. An announcement without ``mac`` is resolved through
        the ARP table in the calling thread.
        """
        parsed = self._decode(data, addr)
        if parsed is None:
            return None
        payload, family, hint, address = parsed
        mac = payload.get("mac")
        if not isinstance(mac, str) or not mac:
            mac = self._resolve_mac(address)
        if not mac:
            logger.debug("No identifier for robot at %s; ignoring announcement", address)
            return None
        return _build_robot(payload, family, hint, address, mac, now)

    def _decode(
        self, data: bytes, addr: tuple[str, int] | None
    ) -> tuple[dict[str, Any], str, str, str] | None:
        """Validate a datagram; returns ``(payload, family, hint, address)``."""
        if data.strip() == DISCOVERY_MESSAGE:
            return None
        try:
            payload = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.debug("Ignoring non-JSON datagram from %s: %s", addr, exc)
            return None
        if not isinstance(payload, dict):
            return None
        split = _split_hostname(payload.get("hostname"))
        if split is None:
            return None
        family, hint = split

        address = payload.get("ip")
        if not isinstance(address, str) or not address:
            address = addr[0] if addr else ""
        if not address:
            return None
        return payload, family, hint, address

    def on_announcement(
        self,
        data: bytes,
        addr: tuple[str, int] | None = None,
        now: float | None = None,
    ) -> DiscoveredRobot | None:
        """
        Handle one datagram: parse, refresh the registry and notify subscribers.

        Never raises; malformed data is dropped. When the announcement has no
        ``mac`` and an event loop is running, the ARP lookup runs in the
        default executor and the robot is registered once it completes; the
        call then returns ``None``.
        """
        try:
            parsed = self._decode(data, addr)
        except Exception:
            logger.exception("Failed to parse discovery datagram from %s", addr)
            return None
        if parsed is None:
            return None
        payload, family, hint, address = parsed
        now = time.monotonic() if now is None else now

        mac = payload.get("mac")
        if isinstance(mac, str) and mac:
            return self._register(_build_robot(payload, family, hint, address, mac, now))
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                mac = self._resolve_mac(address)
            except Exception:
                logger.exception("MAC lookup for %s failed", address)
                return None
            return self._on_resolved(payload, family, hint, address, mac, now)
        if address in self._resolving:
            logger.debug("MAC lookup for %s already pending; announcement dropped", address)
            return None
        task = loop.create_task(self._resolve(payload, family, hint, address, now))
        self._resolving[address] = task
        task.add_done_callback(lambda _t: self._resolving.pop(address, None))
        return None

    async def _resolve(
        self, payload: dict[str, Any], family: str, hint: str, address: str, now: float
    ) -> None:
        loop = asyncio.get_running_loop()
        try:
            mac = await loop.run_in_executor(None, self._resolve_mac, address)
        except Exception:
            logger.exception("MAC lookup for %s failed", address)
            return
        self._on_resolved(payload, family, hint, address, mac, now)

    def _on_resolved(
        self,
        payload: dict[str, Any],
        family: str,
        hint: str,
        address: str,
        mac: str,
        now: float,
    ) -> DiscoveredRobot | None:
        if not mac:
            logger.debug("No identifier for robot at %s; ignoring announcement", address)
            return None
        return self._register(_build_robot(payload, family, hint, address, mac, now))

    def _register(self, robot: DiscoveredRobot) -> DiscoveredRobot:
        previous = self._robots.get(robot.identifier)
        self._robots[robot.identifier] = robot
        if previous is None:
            logger.info(
                "Discovered %s %r at %s (id=%s)",
                robot.family,
                robot.name,
                robot.address,
                robot.identifier,
            )
        elif previous.address != robot.address:
            logger.info(
                "Robot %s moved from %s to %s", robot.identifier, previous.address, robot.address
            )
        else:
            logger.debug("← UDP announcement from %s (id=%s)", robot.address, robot.identifier)
        self._notify(robot)
        return robot

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(
        self, identifier: str, callback: Callable[[DiscoveredRobot], None]
    ) -> Callable[[], None]:
        """
        Call *callback* with the robot snapshot on every announcement of *identifier*.

        Returns:
            A function that removes the subscription.
        """
        key = identifier.lower()
        callbacks = self._subscribers.setdefault(key, [])
        if callback not in callbacks:
            callbacks.append(callback)
        return lambda: self.unsubscribe(key, callback)

    def unsubscribe(self, identifier: str, callback: Callable[[DiscoveredRobot], None]) -> None:
        """Remove a subscription; unknown subscriptions are ignored."""
        key = identifier.lower()
        callbacks = self._subscribers.get(key)
        if not callbacks:
            return
        with contextlib.suppress(ValueError):
            callbacks.remove(callback)
        if not callbacks:
            del self._subscribers[key]

    def subscriber_count(self, identifier: str) -> int:
        return len(self._subscribers.get(identifier.lower(), ()))

    def _notify(self, robot: DiscoveredRobot) -> None:
        for callback in list(self._subscribers.get(robot.identifier, ())):
            try:
                callback(robot)
            except Exception:
                logger.exception("Discovery subscriber failed (id=%s)", robot.identifier)

    # ------------------------------------------------------------------
    # Registry queries
    # ------------------------------------------------------------------

    def get(self, identifier: str) -> DiscoveredRobot | None:
        """Return the latest snapshot for *identifier*, if known."""
        return self._robots.get(identifier.lower())

    def robots(self, category: str | None = None) -> list[DiscoveredRobot]:
        """All known robots, optionally only those of *category* (``"vacuum"`` / ``"mop"``)."""
        return [r for r in self._robots.values() if category is None or r.category == category]

    def sweep(self, now: float | None = None) -> list[str]:
        """Drop robots not seen within the staleness window; returns their identifiers."""
        now = time.monotonic() if now is None else now
        stale = [i for i, r in self._robots.items() if r.is_stale(self._stale_after, now)]
        for identifier in stale:
            del self._robots[identifier]
            logger.info("Robot %s not seen for %.0fs; dropped", identifier, self._stale_after)
        return stale
