#!/usr/bin/env python3
"""
basic_control.py — Send one cleaning command to a Roomba/Braava on the LAN.

Usage:
    python examples/basic_control.py --ip 192.0.2.10 --blid 3143C00000000000 --password PW
    python examples/basic_control.py --ip 192.0.2.10 --blid ... --password PW --command dock
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from irobot import RobotConnection
from irobot.const import ALL_COMMANDS

logging.basicConfig(level=logging.INFO, format="%(levelname)s  %(name)s  %(message)s")


async def main(ip: str, blid: str, password: str, command: str) -> None:
    print(f"\n🤖 Connecting to robot @ {ip} (blid={blid})")

    conn = RobotConnection(ip, ip, blid, password)
    await conn.connect()
    try:
        await conn.wait_connected(timeout=10.0)

        # First settled snapshot
        await asyncio.sleep(2)
        snapshot = conn.snapshot
        status = snapshot.get("cleanMissionStatus") or {}
        print(f"   Battery: {snapshot.get('batPct', '?')}%")
        print(f"   Cycle:   {status.get('cycle', '?')}")
        print(f"   Phase:   {status.get('phase', '?')}")

        print(f"\n🧹 Sending {command!r}...")
        await conn.send(command)
    finally:
        await conn.disconnect()

    print("\n✅ Done.")


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="iRobot basic local control")
    ap.add_argument("--ip", required=True, help="Robot IP")
    ap.add_argument("--blid", required=True, help="Robot BLID (MQTT username)")
    ap.add_argument("--password", required=True, help="Robot password (see `irobot pair`)")
    ap.add_argument("--command", choices=ALL_COMMANDS, default="start", help="Command to send")
    args = ap.parse_args()

    asyncio.run(main(ip=args.ip, blid=args.blid, password=args.password, command=args.command))
