"""
irobot.const — Protocol constants for the iRobot local interfaces.

All port numbers, wire tokens, timings and capability names used by the
discovery, pairing and MQTT layers.

Transport support matrix
------------------------
+---------------------------+-------------+------------------------+
| Transport                 | Implemented | Notes                  |
+===========================+=============+========================+
| UDP discovery (5678)      | ✅ Yes      | Broadcast + listen     |
| TLS pairing (8883)        | ✅ Yes      | One-shot password read |
| Local MQTT over TLS (8883)| ✅ Yes      | Primary                |
| Cloud MQTT (AWS IoT)      | ❌ No       | Out of scope           |
+---------------------------+-------------+------------------------+
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Discovery (UDP)
# ---------------------------------------------------------------------------

#: UDP port robots listen and answer on.
DISCOVERY_PORT = 5678

#: Local address the discovery listener binds to.
DISCOVERY_BIND_ADDRESS = "0.0.0.0"

#: Limited broadcast address the discovery token is sent to.
BROADCAST_ADDRESS = "255.255.255.255"

#: ASCII token that asks every robot on the segment to announce itself.
DISCOVERY_MESSAGE = b"irobotmcs"

#: Seconds between discovery broadcasts. CLIENT_RESET_COUNTER is counted in these.
BROADCAST_INTERVAL = 10.0

#: Registry entries not refreshed for this long are dropped (two broadcast intervals).
DISCOVERY_STALE_AFTER = 2 * BROADCAST_INTERVAL

#: Delay before a failed UDP listener is re-created.
LISTENER_RESTART_DELAY = 1.0

#: Hostname prefixes (``<Family>-<BLID>``) that identify a robot, by family.
FAMILY_ROOMBA = "Roomba"
FAMILY_IROBOT = "iRobot"
FAMILY_BRAAVA = "Braava"
KNOWN_FAMILIES: frozenset[str] = frozenset({FAMILY_ROOMBA, FAMILY_IROBOT, FAMILY_BRAAVA})

#: SKU prefix of the Braava jet m6, which announces itself with the ``iRobot`` family.
MOP_SKU_PREFIX = "m6"

CATEGORY_VACUUM = "vacuum"
CATEGORY_MOP = "mop"

# ---------------------------------------------------------------------------
# Pairing (TLS)
# ---------------------------------------------------------------------------

#: TLS port for both the pairing handshake and the MQTT session.
ROBOT_PORT = 8883

#: Magic packet that asks the robot for its local password.
PAIRING_CHALLENGE = bytes.fromhex("f005efcc3b2900")

#: Default payload offset of the password inside the terminal chunk.
PAIRING_SLICE_FROM = 13

#: Payload offset used after the robot announces the split format with a 2-byte chunk.
PAIRING_SLICE_FROM_SPLIT = 9

#: Length of the chunk that announces the split format.
PAIRING_SPLIT_MARKER_LENGTH = 2

#: Chunks of this length or shorter never carry the password.
PAIRING_MIN_SECRET_CHUNK = 7

#: Seconds to wait for the password on a single handshake.
PAIRING_TIMEOUT = 5.0

#: Seconds between handshake attempts while waiting for the HOME button press.
PAIRING_RETRY_INTERVAL = 20.0

#: Total seconds to keep retrying the handshake before giving up.
PAIRING_RETRY_WINDOW = 60.0

# ---------------------------------------------------------------------------
# MQTT session
# ---------------------------------------------------------------------------

#: MQTT keepalive interval in seconds.
MQTT_KEEPALIVE = 60

#: Default timeout (seconds) when waiting for the broker to accept the session.
DEFAULT_CONNECT_TIMEOUT = 10.0

#: Robot firmware ships with legacy ciphers only.
TLS_CIPHERS = "DEFAULT:!DH:@SECLEVEL=0"

#: Topic for ``{command, time, initiator}`` envelopes.
TOPIC_CMD = "cmd"

#: Topic for ``{state: {...}}`` preference writes.
TOPIC_DELTA = "delta"

#: Subscription filter covering the robot's shadow updates.
TOPIC_SUBSCRIBE_ALL = "#"

#: ``initiator`` value stamped on every command envelope.
COMMAND_INITIATOR = "localApp"

#: Commands accepted on the ``cmd`` topic.
COMMAND_START = "start"
COMMAND_PAUSE = "pause"
COMMAND_STOP = "stop"
COMMAND_RESUME = "resume"
COMMAND_DOCK = "dock"
ALL_COMMANDS: tuple[str, ...] = (
    COMMAND_START,
    COMMAND_PAUSE,
    COMMAND_STOP,
    COMMAND_RESUME,
    COMMAND_DOCK,
)

# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------

#: Seconds of radio silence before a non-definitive snapshot is emitted.
QUIET_PERIOD = 3.0

#: Vendor field carrying the ``(cycle, phase)`` mission status.
FIELD_MISSION_STATUS = "cleanMissionStatus"
FIELD_BATTERY = "batPct"
FIELD_BIN = "bin"
FIELD_TANK_LEVEL = "tankLvl"
FIELD_MOP_READY = "mopReady"
FIELD_DETECTED_PAD = "detectedPad"

# ---------------------------------------------------------------------------
# Device adapter
# ---------------------------------------------------------------------------

#: Announcements after which the session is rebuilt even when nothing changed
#: (30 broadcasts at 10 s is roughly five minutes).
CLIENT_RESET_COUNTER = 30

#: Seconds between "are we still connected" checks while disconnected.
RECONNECT_CHECK_INTERVAL = 15.0

#: Reason passed to ``set_unavailable`` while the robot is unreachable.
UNAVAILABLE_OFFLINE = "offline"

# ---------------------------------------------------------------------------
# Host capabilities
# ---------------------------------------------------------------------------

CAPABILITY_VACUUM_STATE = "vacuumcleaner_state"
CAPABILITY_MOP_STATE = "mob_state"
CAPABILITY_BATTERY = "measure_battery"
CAPABILITY_BIN_FULL = "bin_full"
CAPABILITY_BIN_PRESENT = "bin_present"
CAPABILITY_TANK_FULL = "tank_full"
CAPABILITY_TANK_PRESENT = "tank_present"
CAPABILITY_LID_CLOSED = "lid_closed"
CAPABILITY_DETECTED_PAD = "detected_pad"

#: Auxiliary booleans exposed to flow conditions.
CONDITION_CAPABILITIES: tuple[str, ...] = (
    CAPABILITY_BIN_FULL,
    CAPABILITY_BIN_PRESENT,
    CAPABILITY_TANK_FULL,
    CAPABILITY_TANK_PRESENT,
    CAPABILITY_LID_CLOSED,
    CAPABILITY_DETECTED_PAD,
)

#: Persisted store keys. ``category`` pins the device profile across restarts.
STORE_IP = "ip"
STORE_AUTH = "auth"
STORE_CATEGORY = "category"
