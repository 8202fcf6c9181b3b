"""
Tests for irobot.pairing — password retrieval over the robot's TLS control port.

Covers:
- Chunk parsing (split marker, ignored short chunks, default offset)
- Challenge written once, socket closed afterwards
- Records read one at a time from a blocking TLS socket
- Busy / timeout / unreachable error mapping
- Retry loop within the pairing window
"""

from __future__ import annotations

import ssl
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from irobot.exceptions import (
    IRobotConnectionError,
    PairingTimeoutError,
    RobotBusyError,
)
from irobot.models import PairingSecret
from irobot.pairing import fetch_secret, parse_secret_chunk, wait_for_secret

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tls(records: list[bytes] | Exception) -> tuple[MagicMock, MagicMock]:
    """Return ``(context, sock)`` where ``sock.recv`` yields *records* one per call."""
    sock = MagicMock()
    sock.recv = MagicMock(side_effect=records)
    context = MagicMock()
    context.wrap_socket.return_value.__enter__.return_value = sock
    return context, sock


# ---------------------------------------------------------------------------
# parse_secret_chunk
# ---------------------------------------------------------------------------


class TestParseSecretChunk:
    def test_split_marker_moves_offset(self):
        assert parse_secret_chunk(b"\xf0\x23", 13) == (None, 9)

    def test_short_chunk_ignored(self):
        assert parse_secret_chunk(b"1234567", 13) == (None, 13)

    def test_secret_at_default_offset(self):
        chunk = b"\xf0\x23\xef\xcc\x3b\x29\x00" + b"\x00" * 6 + b":1:1486937829:gOiz"
        assert parse_secret_chunk(chunk, 13) == (":1:1486937829:gOiz", 13)

    def test_secret_nul_stripped(self):
        chunk = b"A" * 9 + b"secretpw\x00"
        assert parse_secret_chunk(chunk, 9) == ("secretpw", 9)


# ---------------------------------------------------------------------------
# fetch_secret
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestFetchSecret:
    async def test_two_byte_record_then_secret(self):
        context, sock = _tls([b"\xf0\x23", b"A" * 9 + b"secretpw\x00"])
        with (
            patch("irobot.pairing.socket.create_connection") as mock_connect,
            patch("irobot.pairing.robot_tls_context", return_value=context),
        ):
            secret = await fetch_secret("192.0.2.10")
        assert secret == "secretpw"
        assert mock_connect.call_args.args == (("192.0.2.10", 8883),)
        context.wrap_socket.assert_called_once_with(mock_connect.return_value.__enter__.return_value)
        sock.sendall.assert_called_once_with(bytes.fromhex("f005efcc3b2900"))
        assert sock.recv.call_count == 2
        context.wrap_socket.return_value.__exit__.assert_called_once()

    async def test_default_offset(self):
        context, _ = _tls([b"B" * 13 + b":1:123:abc"])
        with (
            patch("irobot.pairing.socket.create_connection"),
            patch("irobot.pairing.robot_tls_context", return_value=context),
        ):
            assert await fetch_secret("192.0.2.10") == ":1:123:abc"

    async def test_short_records_skipped(self):
        context, _ = _tls([b"1234567", b"C" * 13 + b"pw123456"])
        with (
            patch("irobot.pairing.socket.create_connection"),
            patch("irobot.pairing.robot_tls_context", return_value=context),
        ):
            assert await fetch_secret("192.0.2.10") == "pw123456"

    async def test_read_timeout_bounded_by_deadline(self):
        context, sock = _tls([b"\xf0\x23", b"A" * 9 + b"pw\x00"])
        with (
            patch("irobot.pairing.socket.create_connection"),
            patch("irobot.pairing.robot_tls_context", return_value=context),
        ):
            await fetch_secret("192.0.2.10", timeout=2.0)
        timeouts = [c.args[0] for c in sock.settimeout.call_args_list]
        assert len(timeouts) == 2
        assert all(0 < t <= 2.0 for t in timeouts)

    async def test_refused_is_busy(self):
        with (
            patch(
                "irobot.pairing.socket.create_connection",
                side_effect=ConnectionRefusedError(),
            ),
            pytest.raises(RobotBusyError),
        ):
            await fetch_secret("192.0.2.10")

    async def test_connect_timeout(self):
        with (
            patch("irobot.pairing.socket.create_connection", side_effect=TimeoutError()),
            pytest.raises(PairingTimeoutError),
        ):
            await fetch_secret("192.0.2.10")

    async def test_unreachable(self):
        with patch(
            "irobot.pairing.socket.create_connection",
            side_effect=OSError("no route to host"),
        ):
            with pytest.raises(IRobotConnectionError) as exc_info:
                await fetch_secret("192.0.2.10")
        assert type(exc_info.value) is IRobotConnectionError

    async def test_tls_failure(self):
        context = MagicMock()
        context.wrap_socket.side_effect = ssl.SSLError("handshake failure")
        with (
            patch("irobot.pairing.socket.create_connection"),
            patch("irobot.pairing.robot_tls_context", return_value=context),
        ):
            with pytest.raises(IRobotConnectionError) as exc_info:
                await fetch_secret("192.0.2.10")
        assert type(exc_info.value) is IRobotConnectionError

    async def test_closed_without_secret(self):
        context, _ = _tls([b""])
        with (
            patch("irobot.pairing.socket.create_connection"),
            patch("irobot.pairing.robot_tls_context", return_value=context),
            pytest.raises(PairingTimeoutError),
        ):
            await fetch_secret("192.0.2.10")
        context.wrap_socket.return_value.__exit__.assert_called_once()

    async def test_silent_robot_times_out(self):
        context, _ = _tls(TimeoutError("timed out"))
        with (
            patch("irobot.pairing.socket.create_connection"),
            patch("irobot.pairing.robot_tls_context", return_value=context),
            pytest.raises(PairingTimeoutError),
        ):
            await fetch_secret("192.0.2.10", timeout=0.05)
        context.wrap_socket.return_value.__exit__.assert_called_once()


# ---------------------------------------------------------------------------
# wait_for_secret
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
class TestWaitForSecret:
    async def test_retries_until_button_pressed(self):
        fetch = AsyncMock(side_effect=[RobotBusyError("busy"), PairingTimeoutError("t"), "pw"])
        with patch("irobot.pairing.fetch_secret", fetch):
            secret = await wait_for_secret(
                "192.0.2.10", "50:14:79:aa:bb:cc", "BLID", interval=0.01, window=10.0
            )
        assert secret == PairingSecret(identifier="50:14:79:aa:bb:cc", username="BLID", password="pw")
        assert fetch.await_count == 3

    async def test_window_exhausted(self):
        fetch = AsyncMock(side_effect=PairingTimeoutError("t"))
        with (
            patch("irobot.pairing.fetch_secret", fetch),
            pytest.raises(PairingTimeoutError, match="attempt"),
        ):
            await wait_for_secret("192.0.2.10", "aa", "BLID", interval=0.01, window=0.05)
        assert fetch.await_count >= 1

    async def test_other_errors_not_retried(self):
        fetch = AsyncMock(side_effect=IRobotConnectionError("tls failure"))
        with (
            patch("irobot.pairing.fetch_secret", fetch),
            pytest.raises(IRobotConnectionError, match="tls failure"),
        ):
            await wait_for_secret("192.0.2.10", "aa", "BLID", interval=0.01, window=10.0)
        fetch.assert_awaited_once()
