"""
irobot._cli — CLI entry point for the irobot package.

Exposes LAN discovery, one-time password retrieval, a live state monitor and
one-shot cleaning commands. Use --ip, --blid and --password if the robot is
known; otherwise the CLI listens for announcements and uses the first robot
found (or the one at --ip).
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from typing import TYPE_CHECKING, Any

from irobot.const import ALL_COMMANDS, BROADCAST_INTERVAL
from irobot.discovery import DiscoveryService
from irobot.error_reporting import report_telemetry_dump
from irobot.exceptions import IRobotError
from irobot.models import ConnectionEvent
from irobot.mqtt import RobotConnection
from irobot.pairing import wait_for_secret
from irobot.telemetry import derive_capabilities, map_mission_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from irobot.models import DiscoveredRobot

_CLI_EPILOG = """
Commands (grouped)
──────────────────

Discovery
  discover      Listen for robot announcements on the LAN.

Pairing
  pair          Retrieve the robot password (hold HOME until it chimes first).

Status
  watch         Connect and print the normalized state (Ctrl+C to stop).

Control
  start         Start cleaning.
  pause         Pause cleaning.
  stop          Stop cleaning.
  resume        Resume a paused mission.
  dock          Return to the dock.

Connection (optional; omit --ip/--blid to auto-discover)
  --ip IP           Robot address.
  --blid BLID       Robot BLID (MQTT username).
  --password PW     Robot password (or IROBOT_PASSWORD).
  --timeout N       Seconds to wait for discovery / session (default: 10).

Troubleshooting
  --debug           Verbose logging (or IROBOT_DEBUG=1).
  --report-telemetry  Send captured MQTT traffic to Sentry on exit.

Test (with robot on network)
  irobot discover
  irobot pair --ip 192.0.2.10
  irobot watch --password <PW>
  irobot start --ip 192.0.2.10 --blid <BLID> --password <PW>
  irobot dock
"""

_TELEMETRY_CAPTURE_MAX = 1000
_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--ip",
        type=str,
        default=None,
        help="Robot IP (omit to auto-discover).",
    )
    parser.add_argument(
        "--blid",
        type=str,
        default=None,
        help="Robot BLID / MQTT username (omit to take it from discovery).",
    )
    parser.add_argument(
        "--password",
        type=str,
        default=None,
        help="Robot password (default: IROBOT_PASSWORD environment variable).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="Timeout in seconds (default: 10).",
    )
    _add_debug_args(parser)
    parser.add_argument(
        "--report-telemetry",
        action="store_true",
        dest="report_telemetry",
        help="Capture MQTT traffic and send it to Sentry when done (needs a DSN).",
    )


def _add_debug_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (wire traffic).",
    )


def _apply_debug_env(args: argparse.Namespace) -> None:
    """IROBOT_DEBUG=1/true/yes enables --debug when it was not passed."""
    if not getattr(args, "debug", False):
        args.debug = os.environ.get("IROBOT_DEBUG", "").strip().lower() in _TRUTHY


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if getattr(args, "debug", False) else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")


def _telemetry_capture_max(args: argparse.Namespace) -> int:
    return _TELEMETRY_CAPTURE_MAX if getattr(args, "report_telemetry", False) else 0


def _maybe_report_telemetry(args: argparse.Namespace, conn: RobotConnection) -> None:
    if getattr(args, "report_telemetry", False):
        report_telemetry_dump(conn.identifier, conn.captured())


def _redact(secret: str, show: bool) -> str:
    if show:
        return secret
    return f"{secret[:2]}***" if len(secret) > 4 else "***"


async def _discover_robots(duration: float) -> list[DiscoveredRobot]:
    """Listen for *duration* seconds and return every robot that announced itself."""
    async with DiscoveryService() as discovery:
        await asyncio.sleep(duration)
        return discovery.robots()


async def _find_robot(args: argparse.Namespace) -> DiscoveredRobot | None:
    robots = await _discover_robots(getattr(args, "timeout", BROADCAST_INTERVAL))
    ip = getattr(args, "ip", None)
    for robot in robots:
        if ip is None or robot.address == ip:
            return robot
    return None


async def _with_connection(
    args: argparse.Namespace,
) -> AsyncIterator[RobotConnection]:
    """Yield a connected session. Disconnects on exit."""
    password = getattr(args, "password", None) or os.environ.get("IROBOT_PASSWORD")
    if not password:
        raise SystemExit("A robot password is required: use --password or IROBOT_PASSWORD.")

    ip, blid, identifier = args.ip, args.blid, args.ip or ""
    if not (ip and blid):
        if not ip:
            print("Discovering...")
        robot = await _find_robot(args)
        if robot is None:
            raise SystemExit("No robot found. Use --ip and --blid or run on the robot's network.")
        ip = robot.address
        blid = blid or robot.credential_hint
        identifier = robot.identifier

    conn = RobotConnection(
        identifier,
        ip,
        blid,
        password,
        connect_timeout=args.timeout,
        capture_max=_telemetry_capture_max(args),
    )
    await conn.connect()
    try:
        await conn.wait_connected()
        yield conn
    finally:
        _maybe_report_telemetry(args, conn)
        await conn.disconnect()


def _main() -> None:
    parser = argparse.ArgumentParser(
        prog="irobot",
        description="iRobot Roomba/Braava local control (MQTT over TLS).",
        epilog=_CLI_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Discovery, pairing, status and control.",
    )

    # ----- Discovery -----
    discover_parser = subparsers.add_parser(
        "discover", help="Listen for robot announcements on the LAN."
    )
    discover_parser.add_argument(
        "--duration",
        type=float,
        default=BROADCAST_INTERVAL,
        help=f"Seconds to listen (default: {BROADCAST_INTERVAL:.0f}).",
    )
    discover_parser.add_argument(
        "--category",
        choices=("vacuum", "mop"),
        default=None,
        help="Only list robots of this category.",
    )
    _add_debug_args(discover_parser)

    # ----- Pairing -----
    pair_parser = subparsers.add_parser(
        "pair", help="Retrieve the robot password (hold HOME until it chimes)."
    )
    pair_parser.add_argument("--ip", type=str, required=True, help="Robot IP.")
    pair_parser.add_argument(
        "--timeout",
        type=float,
        default=BROADCAST_INTERVAL,
        help="Seconds to listen for the robot's announcement (default: 10).",
    )
    pair_parser.add_argument(
        "--show-secret",
        action="store_true",
        dest="show_secret",
        help="Print the password in full.",
    )
    _add_debug_args(pair_parser)

    # ----- Status -----
    watch_parser = subparsers.add_parser(
        "watch", help="Print the normalized state as it changes (Ctrl+C to stop)."
    )
    _add_connection_args(watch_parser)

    # ----- Control -----
    for command in ALL_COMMANDS:
        command_parser = subparsers.add_parser(command, help=f"Send the {command!r} command.")
        _add_connection_args(command_parser)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(0)

    _apply_debug_env(args)
    _configure_logging(args)

    handlers = {
        "discover": _run_discover,
        "pair": _run_pair,
        "watch": _run_watch,
        **dict.fromkeys(ALL_COMMANDS, _run_command),
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)
    try:
        asyncio.run(handler(args))
    except IRobotError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


# ----- Discovery (no connection) -----
async def _run_discover(args: argparse.Namespace) -> None:
    print(f"Listening {args.duration:.0f}s for robot announcements...")
    robots = await _discover_robots(args.duration)
    if args.category:
        robots = [r for r in robots if r.category == args.category]
    if not robots:
        print("No robots found.")
        sys.exit(1)
    col_ip = max(len(r.address) for r in robots) + 1
    col_id = max(len(r.identifier) for r in robots) + 1
    col_name = max([len(r.name) for r in robots] + [4]) + 1
    fmt = f"{{:<{col_ip}}} {{:<{col_id}}} {{:<7}} {{:<8}} {{:<{col_name}}} {{}}"
    print(fmt.format("IP", "ID", "TYPE", "FAMILY", "NAME", "BLID"))
    print("-" * (col_ip + col_id + col_name + 40))
    for r in robots:
        print(fmt.format(r.address, r.identifier, r.category, r.family, r.name, r.credential_hint))


# ----- Pairing -----
async def _run_pair(args: argparse.Namespace) -> None:
    print(f"Looking for the robot at {args.ip}...")
    robot = await _find_robot(args)
    if robot is None:
        print(f"No robot announced itself at {args.ip}.")
        sys.exit(1)
    print("Hold the HOME button (CLEAN on Braava) until the robot chimes...")
    secret = await wait_for_secret(robot.address, robot.identifier, robot.credential_hint)
    print(
        json.dumps(
            {
                "identifier": secret.identifier,
                "ip": robot.address,
                "username": secret.username,
                "password": _redact(secret.password, args.show_secret),
            },
            indent=2,
        )
    )


# ----- Status -----
def _format_state(snapshot: dict[str, Any]) -> str:
    state = map_mission_state(snapshot)
    parts = [f"State: {state or '?'}"]
    for name, value in derive_capabilities(snapshot).items():
        parts.append(f"{name}={value}")
    return "  ".join(parts)


async def _run_watch(args: argparse.Namespace) -> None:
    async for conn in _with_connection(args):
        print(f"Connected to {conn.host}. Watching (Ctrl+C to stop)...")
        queue: asyncio.Queue[tuple[ConnectionEvent, Any]] = asyncio.Queue()
        conn.add_listener(lambda event, data: queue.put_nowait((event, data)))
        with contextlib.suppress(asyncio.CancelledError):
            while True:
                event, data = await queue.get()
                if event is ConnectionEvent.STATE:
                    print(f"  {_format_state(data)}")
                elif event in (ConnectionEvent.OFFLINE, ConnectionEvent.ERROR):
                    print(f"Connection lost ({data}).")
                    sys.exit(1)
        break


# ----- One-shot commands -----
async def _run_command(args: argparse.Namespace) -> None:
    async for conn in _with_connection(args):
        envelope = await conn.send(args.command)
        print(f"Sent {envelope['command']!r} to {conn.host}.")
        break


def main() -> None:
    _main()
