"""
irobot._codec — JSON encode/decode helpers for MQTT payloads.

iRobot robots speak plain UTF-8 JSON on every topic. Inbound telemetry is a
shadow document ``{"state": {"reported": {...}}}``; outbound commands are
either ``{"command", "time", "initiator"}`` or ``{"state": {...}}``.
"""

from __future__ import annotations

import json
from typing import Any, cast

from .exceptions import IRobotProtocolError


def encode(payload: dict[str, Any]) -> bytes:
    """
    Encode a Python dict to a compact JSON byte string.

    Example::

        encode({"command": "start", "time": 1700000000, "initiator": "localApp"})
    """
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def decode(data: bytes | str) -> dict[str, Any]:
    """
    Decode a JSON payload into a dict.

    Raises:
        IRobotProtocolError: If the payload is not JSON or not a JSON object.
    """
    try:
        parsed = json.loads(data)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise IRobotProtocolError(f"Payload is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise IRobotProtocolError(f"Expected a JSON object, got {type(parsed).__name__}")
    return cast("dict[str, Any]", parsed)


def reported_state(payload: dict[str, Any]) -> dict[str, Any] | None:
    """
    Return the ``state.reported`` fragment of a shadow document, if present.

    Returns ``None`` for any other envelope shape.
    """
    state = payload.get("state")
    if not isinstance(state, dict):
        return None
    reported = state.get("reported")
    if not isinstance(reported, dict):
        return None
    return cast("dict[str, Any]", reported)
