"""
irobot.mqtt — Persistent MQTT-over-TLS session to a single robot.

Wraps ``paho-mqtt`` in an asyncio-friendly interface. Every robot runs its
own MQTT broker on port 8883 with a self-signed certificate; the username is
the robot BLID and the password is the secret obtained during pairing.

Protocol notes:
- Only one local client may be connected at a time; the robot refuses others.
- The session is opened with ``clean_session=False`` so commands queued
  during a brief drop are not lost.
- The robot pushes its shadow as JSON ``{"state": {"reported": {...}}}``
  fragments; they are merged and debounced by
  :class:`~irobot.telemetry.TelemetryDebouncer`.
- Commands are published to ``cmd`` as ``{command, time, initiator}``;
  preference writes go to ``delta`` as ``{state: {...}}``.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

    import paho.mqtt.client as _paho

from ._codec import decode, encode, reported_state
from ._tls import robot_tls_context
from .const import (
    COMMAND_DOCK,
    COMMAND_INITIATOR,
    COMMAND_PAUSE,
    COMMAND_RESUME,
    COMMAND_START,
    COMMAND_STOP,
    DEFAULT_CONNECT_TIMEOUT,
    MQTT_KEEPALIVE,
    QUIET_PERIOD,
    ROBOT_PORT,
    TOPIC_CMD,
    TOPIC_DELTA,
    TOPIC_SUBSCRIBE_ALL,
)
from .exceptions import (
    IRobotCommandError,
    IRobotConnectionError,
    IRobotNotConnectedError,
    IRobotProtocolError,
    IRobotTimeoutError,
    IRobotValidationError,
    InvalidHostError,
    InvalidPasswordError,
    InvalidUsernameError,
)
from .models import CommandEnvelope, ConnectionEvent
from .telemetry import TelemetryDebouncer

logger = logging.getLogger(__name__)


def _require_string(value: Any, error: type[Exception], what: str) -> str:
    if not isinstance(value, str) or not value.strip("\0 "):
        raise error(f"invalid_{what}: expected a non-empty string, got {type(value).__name__}")
    return value.replace("\0", "")


class RobotConnection:
    """
    Asyncio-compatible MQTT session to one robot.

    Uses paho-mqtt v2 (``CallbackAPIVersion.VERSION2``) in its callback-based
    API, bridged to asyncio via ``loop.call_soon_threadsafe``. Lifecycle and
    telemetry are delivered to listeners as :class:`~irobot.models.ConnectionEvent`
    values, always on the event loop and never after :meth:`disconnect`.

    Example::

        conn = RobotConnection("50:14:79:aa:bb:cc", "192.0.2.10", blid, password)
        conn.add_listener(lambda event, data: print(event, data))
        await conn.connect()
        await conn.wait_connected()
        await conn.start()
        await conn.disconnect()

    Raises:
        IRobotValidationError: If the identifier is not a non-empty string.
        InvalidHostError / InvalidUsernameError / InvalidPasswordError:
            If a parameter is not a non-empty string.
    """

    def __init__(
        self,
        identifier: str,
        host: str,
        username: str,
        password: str,
        port: int = ROBOT_PORT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        quiet_period: float = QUIET_PERIOD,
        qos: int = 0,
        initiator: str = COMMAND_INITIATOR,
        capture_max: int = 0,
    ) -> None:
        self._identifier = _require_string(identifier, IRobotValidationError, "identifier")
        self._host = _require_string(host, InvalidHostError, "host")
        self._username = _require_string(username, InvalidUsernameError, "username")
        self._password = _require_string(password, InvalidPasswordError, "password")
        self._port = port
        self._connect_timeout = connect_timeout
        self._quiet_period = quiet_period
        self._qos = qos
        self._initiator = initiator

        self._client: _paho.Client | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._connected = asyncio.Event()
        self._closed = False
        self._listeners: list[Callable[[ConnectionEvent, Any], None]] = []
        self._debouncer: TelemetryDebouncer | None = None
        self._capture: collections.deque[dict[str, Any]] | None = (
            collections.deque(maxlen=capture_max) if capture_max > 0 else None
        )

    @property
    def identifier(self) -> str:
        """Identifier of the robot this session belongs to."""
        return self._identifier

    @property
    def host(self) -> str:
        """Robot address."""
        return self._host

    @property
    def is_connected(self) -> bool:
        """True if the MQTT session is established."""
        return self._connected.is_set()

    @property
    def is_closed(self) -> bool:
        """True once :meth:`disconnect` was called."""
        return self._closed

    @property
    def snapshot(self) -> dict[str, Any]:
        """Current merged telemetry snapshot (empty before the first fragment)."""
        return self._debouncer.snapshot if self._debouncer else {}

    def captured(self) -> list[dict[str, Any]]:
        """
        Return recorded traffic as ``{"direction", "topic", "payload"}`` envelopes.

        Empty unless the session was created with ``capture_max > 0``.
        """
        return list(self._capture) if self._capture is not None else []

    def _record(self, direction: str, topic: str, payload: dict[str, Any]) -> None:
        if self._capture is not None:
            self._capture.append({"direction": direction, "topic": topic, "payload": payload})

    def add_listener(self, callback: Callable[[ConnectionEvent, Any], None]) -> None:
        """
        Register a lifecycle/telemetry listener. Duplicates are ignored.

        The listener is called as ``callback(event, data)``: ``data`` is the
        snapshot dict for ``STATE``, the exception for ``ERROR``, the paho
        reason code for ``OFFLINE``/``CLOSED`` and ``None`` for ``CONNECTED``.
        """
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[ConnectionEvent, Any], None]) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the TLS socket and start the MQTT session.

        Returns once the socket is open; ``CONNECTED`` is emitted when the
        robot accepts the session (use :meth:`wait_connected` to await it).

        Raises:
            IRobotConnectionError: If paho-mqtt is missing, the session was
                                   already closed, or the socket/TLS setup fails.
        """
        try:
            import paho.mqtt.client as mqtt  # noqa: PLC0415
        except ImportError as exc:
            raise IRobotConnectionError(
                "paho-mqtt is required: pip install 'python-irobot'"
            ) from exc

        if self._closed:
            raise IRobotConnectionError("Session was closed; create a new RobotConnection.")
        if self._client is not None:
            await self._stop_client()

        self._loop = asyncio.get_running_loop()
        self._connected.clear()
        self._debouncer = TelemetryDebouncer(
            self._on_debounced_state, quiet_period=self._quiet_period, loop=self._loop
        )

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,  # type: ignore[attr-defined]
            client_id=self._username,
            clean_session=False,
            protocol=mqtt.MQTTv311,
            reconnect_on_failure=False,
        )
        client.username_pw_set(self._username, self._password)
        client.tls_set_context(robot_tls_context())
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        self._client = client

        try:
            await self._loop.run_in_executor(
                None, lambda: client.connect(self._host, self._port, keepalive=MQTT_KEEPALIVE)
            )
        except OSError as exc:
            if self._client is client:
                self._client = None
            raise IRobotConnectionError(
                f"Cannot connect to robot {self._host}:{self._port}: {exc}"
            ) from exc

        if self._closed or self._client is not client:
            # Torn down while the socket was opening: never start its network loop.
            client.disconnect()
            logger.debug("Dropping MQTT socket to %s opened after teardown", self._host)
            return

        client.loop_start()
        logger.info(
            "MQTT session opening to %s:%d (id=%s)", self._host, self._port, self._identifier
        )

    async def wait_connected(self, timeout: float | None = None) -> None:
        """
        Wait until the robot accepts the session.

        Raises:
            IRobotTimeoutError: If not connected within *timeout* seconds.
        """
        timeout = self._connect_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except TimeoutError as exc:
            raise IRobotTimeoutError(
                f"Timed out waiting for MQTT session to {self._host}:{self._port}"
            ) from exc

    async def disconnect(self) -> None:
        """
        Tear the session down. Idempotent.

        Stops listening first, cancels the pending telemetry emission, then
        disconnects and joins the paho network thread off the event loop. No
        event is delivered to listeners after this call starts.
        """
        if self._closed:
            return
        self._closed = True
        if self._debouncer is not None:
            self._debouncer.cancel()
        await self._stop_client()
        self._listeners.clear()
        logger.info("MQTT session closed to %s (id=%s)", self._host, self._identifier)

    async def _stop_client(self) -> None:
        client, self._client = self._client, None
        self._connected.clear()
        if client is None:
            return
        client.on_connect = None
        client.on_connect_fail = None
        client.on_disconnect = None
        client.on_message = None
        client.disconnect()
        # paho.loop_stop() joins the network thread; run it off the event loop.
        await asyncio.get_running_loop().run_in_executor(None, client.loop_stop)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def send(self, command: str) -> dict[str, Any]:
        """
        Publish a ``{command, time, initiator}`` envelope on the ``cmd`` topic.

        Returns:
            The published envelope.

        Raises:
            IRobotNotConnectedError: If the session is not connected.
            IRobotCommandError:      If paho refuses the publish.
        """
        envelope = CommandEnvelope(command=command, initiator=self._initiator).to_dict()
        self._publish(TOPIC_CMD, envelope, command)
        return envelope

    async def set_preferences(self, delta: dict[str, Any]) -> dict[str, Any]:
        """Publish a ``{state: delta}`` preference write on the ``delta`` topic."""
        envelope = {"state": delta}
        self._publish(TOPIC_DELTA, envelope, TOPIC_DELTA)
        return envelope

    async def start(self) -> dict[str, Any]:
        """Start cleaning."""
        return await self.send(COMMAND_START)

    async def pause(self) -> dict[str, Any]:
        """Pause cleaning."""
        return await self.send(COMMAND_PAUSE)

    async def stop(self) -> dict[str, Any]:
        """Stop cleaning."""
        return await self.send(COMMAND_STOP)

    async def resume(self) -> dict[str, Any]:
        """Resume a paused mission."""
        return await self.send(COMMAND_RESUME)

    async def dock(self) -> dict[str, Any]:
        """Return to the dock."""
        return await self.send(COMMAND_DOCK)

    def _publish(self, topic: str, payload: dict[str, Any], command: str) -> None:
        if self._closed or self._client is None or not self.is_connected:
            raise IRobotNotConnectedError(
                f"Not connected to robot {self._host}. Call connect() first."
            )
        info = self._client.publish(topic, encode(payload), qos=self._qos)
        rc = getattr(info, "rc", 0)
        if rc != 0:
            raise IRobotCommandError(f"Publish to {topic!r} failed (rc={rc})", command=command)
        self._record("sent", topic, payload)
        logger.debug("→ MQTT [%s] %s", topic, str(payload)[:160])

    # ------------------------------------------------------------------
    # Event dispatch (always on the asyncio loop)
    # ------------------------------------------------------------------

    def _post(self, callback: Callable[..., None], *args: Any) -> None:
        """Schedule *callback* on the loop from the paho thread."""
        if self._loop is None or self._closed:
            return
        # The loop may already be closed during interpreter shutdown.
        with contextlib.suppress(RuntimeError):
            self._loop.call_soon_threadsafe(callback, *args)

    def _dispatch(self, event: ConnectionEvent, data: Any = None) -> None:
        if self._closed:
            return
        if event is ConnectionEvent.CONNECTED:
            self._connected.set()
        elif event in (ConnectionEvent.OFFLINE, ConnectionEvent.CLOSED):
            self._connected.clear()
        for listener in list(self._listeners):
            try:
                listener(event, data)
            except Exception:
                logger.exception("Listener failed handling %s (id=%s)", event, self._identifier)

    def _on_debounced_state(self, snapshot: dict[str, Any]) -> None:
        self._dispatch(ConnectionEvent.STATE, snapshot)

    def _handle_payload(self, topic: str, payload: bytes) -> None:
        if self._closed or self._debouncer is None:
            return
        try:
            message = decode(payload)
        except IRobotProtocolError as exc:
            logger.warning("Dropping malformed packet on %s: %s", topic, exc)
            return
        self._record("received", topic, message)
        fragment = reported_state(message)
        if fragment is None:
            logger.debug("Ignoring non-shadow packet on %s: %s", topic, str(message)[:160])
            return
        logger.debug("← MQTT [%s] %s", topic, str(fragment)[:160])
        self._debouncer.merge(fragment)

    # ------------------------------------------------------------------
    # paho-mqtt callbacks (called from paho thread → bridge to asyncio)
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        client: Any,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        props: Any,
    ) -> None:
        """
        paho-mqtt v2 on_connect callback.

        ``reason_code`` is a ``ReasonCode`` object under paho v2;
        ``getattr(..., "value", ...)`` normalises it to an ``int``.
        """
        rc = getattr(reason_code, "value", reason_code)
        if rc == 0:
            client.subscribe(TOPIC_SUBSCRIBE_ALL, qos=self._qos)
            self._post(self._dispatch, ConnectionEvent.CONNECTED, None)
            logger.info("MQTT connected to %s (id=%s)", self._host, self._identifier)
        else:
            logger.error("MQTT connect to %s refused rc=%s", self._host, rc)
            self._post(
                self._dispatch,
                ConnectionEvent.ERROR,
                IRobotConnectionError(f"Robot refused MQTT session (rc={rc})"),
            )

    def _on_connect_fail(self, client: Any, userdata: Any) -> None:
        """paho-mqtt v2 on_connect_fail callback (network thread could not connect)."""
        logger.warning("MQTT connect to %s failed", self._host)
        self._post(
            self._dispatch,
            ConnectionEvent.ERROR,
            IRobotConnectionError(f"Cannot reach robot {self._host}:{self._port}"),
        )

    def _on_disconnect(
        self,
        client: Any,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        props: Any,
    ) -> None:
        """paho-mqtt v2 on_disconnect callback."""
        rc = getattr(reason_code, "value", reason_code)
        event = ConnectionEvent.CLOSED if rc == 0 else ConnectionEvent.OFFLINE
        logger.warning("MQTT disconnected from %s rc=%s", self._host, rc)
        self._post(self._dispatch, event, rc)

    def _on_message(self, client: Any, userdata: Any, msg: Any) -> None:
        """paho-mqtt on_message callback; parsing happens on the loop."""
        payload = msg.payload
        if not payload:
            return
        self._post(self._handle_payload, msg.topic, bytes(payload))
