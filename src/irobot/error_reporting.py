"""Sentry/GlitchTip error reporting for python-irobot.

Provides init_error_reporting() for crash/error reporting and
report_telemetry_dump() to send captured robot MQTT traffic when a firmware
reports fields or mission phases the state mapper does not understand.
Credentials (robot password, BLID-as-username, ``auth`` store values) are
scrubbed before send.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_SCRUB_KEY_KEYWORDS: tuple[str, ...] = (
    "password",
    "token",
    "secret",
    "credential",
    "auth",
    "username",
    "blid",
)
_SCRUB_MSG_KEYWORDS: tuple[str, ...] = ("password", "token", "secret", "credential")
_SCRUB_KEY_PATTERN = re.compile(r"(?:_|api|access|auth|private)key", re.IGNORECASE)
_REDACTED = "[REDACTED]"


def init_error_reporting(
    dsn: str | None = None,
    environment: str = "production",
    enabled: bool = True,
) -> None:
    """Initialize Sentry/GlitchTip error reporting.

    Opt-in: enable by providing a DSN via argument or environment variables.
    To disable explicitly, pass enabled=False or set IROBOT_SENTRY_DSN="".

    Args:
        dsn: Sentry DSN. If omitted, falls back to the ``IROBOT_SENTRY_DSN`` or
             ``SENTRY_DSN`` environment variables.
        environment: Environment tag (production/development/testing).
        enabled: Master switch. If False, no SDK initialization occurs.
    """
    if not enabled:
        return

    import os  # noqa: PLC0415

    env_dsn = os.environ.get("IROBOT_SENTRY_DSN")
    if env_dsn is not None and env_dsn == "":
        return

    dsn = dsn or env_dsn or os.environ.get("SENTRY_DSN")

    if not dsn:
        return

    try:
        import sentry_sdk  # noqa: PLC0415

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=0.1,
            send_default_pii=False,
            before_send=_scrub_event,  # type: ignore[arg-type, unused-ignore]
        )
        logger.debug("Error reporting initialized (dsn=%s...)", dsn[:30])
    except ImportError:
        logger.debug("sentry-sdk not installed; error reporting disabled")
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to initialize error reporting: %s", exc)


def _is_sensitive(key: str) -> bool:
    return any(s in key.lower() for s in _SCRUB_KEY_KEYWORDS)


def _scrub_event(event: dict, hint: dict) -> dict:  # type: ignore[type-arg]
    """Remove sensitive data before sending."""
    if "extra" in event:
        for key in list(event["extra"]):
            if _is_sensitive(key):
                event["extra"][key] = _REDACTED
            elif isinstance(event["extra"][key], dict):
                event["extra"][key] = _scrub_dict(event["extra"][key])

    if "breadcrumbs" in event and "values" in event["breadcrumbs"]:
        for breadcrumb in event["breadcrumbs"]["values"]:
            if "message" in breadcrumb:
                msg = str(breadcrumb["message"])
                sensitive = any(s in msg.lower() for s in _SCRUB_MSG_KEYWORDS)
                if sensitive or _SCRUB_KEY_PATTERN.search(msg):
                    breadcrumb["message"] = _REDACTED
            if "data" in breadcrumb and isinstance(breadcrumb["data"], dict):
                breadcrumb["data"] = _scrub_dict(breadcrumb["data"])

    return event


def report_telemetry_dump(
    identifier: str,
    messages: list[dict[str, Any]],
    max_messages: int = 500,
    max_payload_chars: int = 50_000,
) -> bool:
    """Send captured robot MQTT traffic to Sentry for troubleshooting.

    Args:
        identifier: Robot identifier (lower-case MAC) attached as a tag.
        messages: Envelopes with "direction", "topic", "payload".
        max_messages: Keep only the most recent N messages (default 500).
        max_payload_chars: Truncate the serialized dump beyond this size.

    Returns:
        True if the dump was sent, False if Sentry is disabled.
    """
    try:
        import sentry_sdk  # noqa: PLC0415
    except ImportError:
        logger.debug("sentry-sdk not installed; telemetry dump not sent")
        return False

    if not sentry_sdk.is_initialized():
        logger.debug("Error reporting not initialized; telemetry dump not sent")
        return False

    trimmed = messages[-max_messages:] if len(messages) > max_messages else messages
    scrubbed = [_scrub_envelope(m) for m in trimmed]
    dump = json.dumps(scrubbed, indent=2, ensure_ascii=False)
    if len(dump) > max_payload_chars:
        dump = dump[:max_payload_chars] + "\n... (truncated)"

    with sentry_sdk.new_scope() as scope:
        scope.set_tag("robot", identifier)
        sentry_sdk.capture_message(
            "Telemetry dump (user-reported)",
            level="info",
            extras={"telemetry_dump": dump, "message_count": len(scrubbed)},
        )
    logger.info("Telemetry dump sent (%d messages)", len(scrubbed))
    return True


def _scrub_envelope(envelope: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of the envelope with sensitive payload keys redacted."""
    out = dict(envelope)
    payload = out.get("payload")
    if isinstance(payload, dict):
        out["payload"] = _scrub_dict(payload)
    return out


def _scrub_dict(d: dict[str, Any]) -> dict[str, Any]:
    """Recursively redact values for keys that look sensitive."""
    result = {}
    for k, v in d.items():
        if _is_sensitive(k):
            result[k] = _REDACTED
        elif isinstance(v, dict):
            result[k] = _scrub_dict(v)
        elif isinstance(v, list):
            result[k] = [_scrub_dict(x) if isinstance(x, dict) else x for x in v]
        else:
            result[k] = v
    return result
