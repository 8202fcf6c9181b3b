"""
irobot.exceptions — Custom exception hierarchy for the python-irobot library.

All exceptions raised by the library are subclasses of ``IRobotError``,
making it easy to catch them with a single ``except IRobotError`` clause.

Hierarchy::

    IRobotError
    ├── IRobotValidationError          # Malformed host / username / password
    │   ├── InvalidHostError
    │   ├── InvalidUsernameError
    │   └── InvalidPasswordError
    ├── IRobotConnectionError          # TLS / MQTT / socket failure
    │   ├── IRobotTimeoutError         # Connection or handshake timed out
    │   │   └── PairingTimeoutError    # No secret within the pairing window
    │   ├── RobotBusyError             # Another client holds the control channel
    │   └── IRobotNotConnectedError    # No live session for the robot
    ├── IRobotProtocolError            # Unexpected data from the robot
    ├── IRobotCommandError             # Publishing a command failed
    └── IRobotCapabilityError          # Requested state cannot be mapped to a command
"""

from __future__ import annotations


class IRobotError(Exception):
    """Base class for all python-irobot exceptions."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class IRobotValidationError(IRobotError, ValueError):
    """
    Connection parameters are malformed.

    Raised before any network traffic is attempted.
    """


class InvalidHostError(IRobotValidationError):
    """The robot address is missing or not a string."""


class InvalidUsernameError(IRobotValidationError):
    """The MQTT username (robot BLID) is missing or not a string."""


class InvalidPasswordError(IRobotValidationError):
    """The MQTT password (pairing secret) is missing or not a string."""


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class IRobotConnectionError(IRobotError):
    """
    The TLS, MQTT or UDP transport failed at the network level.

    Raised when the library cannot reach the robot (connection refused,
    TLS handshake error, socket error, etc.).
    """


class IRobotTimeoutError(IRobotConnectionError):
    """A connection attempt or handshake did not complete in time."""


class PairingTimeoutError(IRobotTimeoutError):
    """
    The robot did not hand out its password within the pairing window.

    Usually means the wrong address, unsupported firmware, or the HOME
    button was not held long enough. The attempt is terminal; start over.
    """


class RobotBusyError(IRobotConnectionError):
    """
    The robot refused the connection because another client holds it.

    Robots accept a single local client at a time. Transient: retry later.
    """


class IRobotNotConnectedError(IRobotConnectionError):
    """A command was requested while no session to the robot is connected."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class IRobotProtocolError(IRobotError):
    """Unexpected or malformed data received from the robot."""


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class IRobotCommandError(IRobotError):
    """
    Publishing a command to the robot failed.

    Attributes:
        command: Name of the command that failed (e.g. ``"start"``).
    """

    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(message)
        self.command = command

    def __str__(self) -> str:
        if self.command:
            return f"IRobotCommandError(command={self.command!r}): {self.args[0]}"
        return f"IRobotCommandError: {self.args[0]}"


class IRobotCapabilityError(IRobotError):
    """
    The host requested a state that this robot cannot be commanded into.

    Raised without generating any wire traffic.
    """

    def __init__(self, message: str, value: str = "") -> None:
        super().__init__(message)
        self.value = value
