"""
irobot.pairing — One-time retrieval of a robot's local MQTT password.

After the user holds the robot's HOME button (or the Braava's CLEAN button)
until it chimes, the robot answers a fixed magic packet on its TLS control
port with its password. The exchange is only needed once, during onboarding;
the password is handed to the host's persistent store and not kept here.

Wire format:
- TLS client to port 8883, certificate verification disabled
  (see :mod:`irobot._tls`).
- Once the handshake completes, write ``f005efcc3b2900`` once.
- The robot replies in TLS records. A 2-byte record announces the split
  format, which moves the password offset from 13 to 9. Records of 7 bytes or
  fewer carry nothing useful. The first longer record holds the password,
  starting at the current offset.

Record boundaries carry meaning, and asyncio's SSL transport joins records
that arrive together. The exchange therefore runs on a blocking socket in the
default executor, where each ``recv`` returns at most one record.

Only one client may hold the control port: a refused connection means some
other app is connected (:class:`~irobot.exceptions.RobotBusyError`, retry
later), while a timeout usually means a wrong address, unsupported firmware
or that the button was not pressed (:class:`~irobot.exceptions.PairingTimeoutError`).
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time

from ._tls import robot_tls_context
from .const import (
    PAIRING_CHALLENGE,
    PAIRING_MIN_SECRET_CHUNK,
    PAIRING_RETRY_INTERVAL,
    PAIRING_RETRY_WINDOW,
    PAIRING_SLICE_FROM,
    PAIRING_SLICE_FROM_SPLIT,
    PAIRING_SPLIT_MARKER_LENGTH,
    PAIRING_TIMEOUT,
    ROBOT_PORT,
)
from .exceptions import (
    IRobotConnectionError,
    PairingTimeoutError,
    RobotBusyError,
)
from .models import PairingSecret

logger = logging.getLogger(__name__)

_READ_SIZE = 1024


def parse_secret_chunk(chunk: bytes, slice_from: int) -> tuple[str | None, int]:
    """
    Interpret one response chunk.

    Returns:
        ``(secret, slice_from)``: ``secret`` is the decoded password when
        *chunk* is the terminal chunk, otherwise ``None``; ``slice_from`` is
        the offset to use for the following chunks.
    """
    if len(chunk) == PAIRING_SPLIT_MARKER_LENGTH:
        return None, PAIRING_SLICE_FROM_SPLIT
    if len(chunk) <= PAIRING_MIN_SECRET_CHUNK:
        return None, slice_from
    secret = chunk[slice_from:].decode("utf-8", errors="replace").replace("\0", "")
    return secret, slice_from


def _exchange(address: str, port: int, timeout: float) -> str:
    """Blocking handshake: connect, send the challenge, read records until the password."""
    deadline = time.monotonic() + timeout
    with socket.create_connection((address, port), timeout=timeout) as raw:
        with robot_tls_context().wrap_socket(raw) as sock:
            logger.info("Sending password request to %s", address)
            sock.sendall(PAIRING_CHALLENGE)
            slice_from = PAIRING_SLICE_FROM
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError("no password before the deadline")
                sock.settimeout(remaining)
                record = sock.recv(_READ_SIZE)
                if not record:
                    raise PairingTimeoutError(
                        f"Robot {address} closed the connection without sending a password"
                    )
                logger.debug("← pairing record (%d bytes)", len(record))
                secret, slice_from = parse_secret_chunk(record, slice_from)
                if secret is not None:
                    return secret


async def fetch_secret(
    address: str,
    timeout: float = PAIRING_TIMEOUT,
    port: int = ROBOT_PORT,
) -> str:
    """
    Ask the robot at *address* for its local password (single attempt).

    Args:
        address: Robot IPv4 address.
        timeout: Upper bound in seconds for connect + handshake + response.
        port:    Control port (default 8883).

    Returns:
        The password as a string.

    Raises:
        RobotBusyError:        Another client holds the control port.
        PairingTimeoutError:   No password within *timeout*.
        IRobotConnectionError: Any other socket or TLS failure.
    """
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, _exchange, address, port, timeout)
    except ConnectionRefusedError as exc:
        raise RobotBusyError(f"Robot {address}:{port} refused the connection (in use)") from exc
    except TimeoutError as exc:
        raise PairingTimeoutError(f"Robot {address}:{port} took too long to respond") from exc
    except OSError as exc:
        raise IRobotConnectionError(f"Pairing with {address}:{port} failed: {exc}") from exc


async def wait_for_secret(
    address: str,
    identifier: str,
    username: str,
    *,
    interval: float = PAIRING_RETRY_INTERVAL,
    window: float = PAIRING_RETRY_WINDOW,
    timeout: float = PAIRING_TIMEOUT,
    port: int = ROBOT_PORT,
) -> PairingSecret:
    """
    Retry :func:`fetch_secret` until the user confirms on the robot.

    The robot only answers after its button was held, so the handshake is
    retried every *interval* seconds on busy or timeout errors. Once *window*
    seconds have elapsed the attempt fails for good.

    Args:
        address:    Robot IPv4 address.
        identifier: Robot identifier (lower-case MAC) to stamp on the result.
        username:   Robot BLID (the discovery credential hint).

    Returns:
        :class:`~irobot.models.PairingSecret` ready for the host store.

    Raises:
        PairingTimeoutError: If no password arrived within *window*.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + window
    attempt = 0
    while True:
        attempt += 1
        try:
            password = await fetch_secret(address, timeout=timeout, port=port)
        except (RobotBusyError, PairingTimeoutError) as exc:
            remaining = deadline - loop.time()
            if remaining <= interval:
                raise PairingTimeoutError(
                    f"No password from {address} after {attempt} attempt(s) in {window:.0f}s"
                ) from exc
            logger.info(
                "Pairing attempt %d with %s failed (%s); retrying in %.0fs",
                attempt,
                address,
                exc,
                interval,
            )
            await asyncio.sleep(interval)
            continue
        logger.info("Retrieved password from %s after %d attempt(s)", address, attempt)
        return PairingSecret(identifier=identifier, username=username, password=password)
