#!/usr/bin/env python3
"""
device_monitor.py — Run a RobotDevice against an in-memory hub.

Discovery finds the robot, the device connects on its own and reconnects when
the robot changes address. Capability changes are printed as they happen.

Usage:
    python examples/device_monitor.py --mac 50:14:79:aa:bb:cc --blid 3143C00000000000 --password PW
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from irobot import DiscoveryService, MemoryHost, RobotDevice

logging.basicConfig(level=logging.WARNING)


def _print_change(name: str, value: object) -> None:
    print(f"  {name:<24} {value}")


async def main(mac: str, blid: str, password: str) -> None:
    print(f"\n📡 Watching robot {mac}. Ctrl+C to stop.\n")
    host = MemoryHost(
        data={"mac": mac},
        store={"auth": {"username": blid, "password": password}},
        on_change=_print_change,
    )
    async with DiscoveryService() as discovery:
        device = RobotDevice(host, discovery)
        await device.start()
        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await device.remove()


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Monitor an iRobot device")
    ap.add_argument("--mac", required=True, help="Robot MAC address")
    ap.add_argument("--blid", required=True, help="Robot BLID (MQTT username)")
    ap.add_argument("--password", required=True, help="Robot password")
    args = ap.parse_args()

    try:
        asyncio.run(main(mac=args.mac, blid=args.blid, password=args.password))
    except KeyboardInterrupt:
        print("\nStopped.")
