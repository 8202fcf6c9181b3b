"""Tests for irobot.error_reporting — _scrub_event, init_error_reporting, report_telemetry_dump."""

from __future__ import annotations

import sys
from unittest.mock import MagicMock, patch

from irobot.error_reporting import (
    _scrub_dict,
    _scrub_envelope,
    _scrub_event,
    init_error_reporting,
    report_telemetry_dump,
)


def _make_event(**kwargs):
    """Build a minimal Sentry event dict."""
    base = {"extra": {}, "breadcrumbs": {"values": []}}
    base.update(kwargs)
    return base


def _with_fake_sentry(fn):
    mock_sentry = MagicMock()
    mock_sentry.is_initialized.return_value = True
    old_sentry = sys.modules.get("sentry_sdk")
    sys.modules["sentry_sdk"] = mock_sentry
    try:
        result = fn()
    finally:
        if old_sentry is None:
            sys.modules.pop("sentry_sdk", None)
        else:
            sys.modules["sentry_sdk"] = old_sentry
    return result, mock_sentry


class TestScrubEvent:
    def test_extra_password_redacted(self):
        event = _make_event(extra={"password": "secret123", "identifier": "50:14:79:aa:bb:cc"})
        result = _scrub_event(event, {})
        assert result["extra"]["password"] == "[REDACTED]"
        assert result["extra"]["identifier"] == "50:14:79:aa:bb:cc"

    def test_extra_auth_store_value_redacted(self):
        event = _make_event(extra={"auth": {"username": "BLID", "password": "pw"}})
        result = _scrub_event(event, {})
        assert result["extra"]["auth"] == "[REDACTED]"

    def test_extra_nested_dict_scrubbed(self):
        event = _make_event(extra={"store": {"ip": "192.0.2.1", "password": "pw"}})
        result = _scrub_event(event, {})
        assert result["extra"]["store"] == {"ip": "192.0.2.1", "password": "[REDACTED]"}

    def test_breadcrumb_message_with_password_redacted(self):
        event = _make_event(
            breadcrumbs={"values": [{"message": "Connecting with password abc123"}]}
        )
        result = _scrub_event(event, {})
        assert result["breadcrumbs"]["values"][0]["message"] == "[REDACTED]"

    def test_breadcrumb_message_without_sensitive_not_redacted(self):
        event = _make_event(breadcrumbs={"values": [{"message": "MQTT connected to 192.0.2.10"}]})
        result = _scrub_event(event, {})
        assert result["breadcrumbs"]["values"][0]["message"] == "MQTT connected to 192.0.2.10"

    def test_breadcrumb_data_key_redacted(self):
        event = _make_event(
            breadcrumbs={
                "values": [{"message": "pairing", "data": {"blid": "3143C0", "ip": "192.0.2.10"}}]
            }
        )
        result = _scrub_event(event, {})
        data = result["breadcrumbs"]["values"][0]["data"]
        assert data["blid"] == "[REDACTED]"
        assert data["ip"] == "192.0.2.10"

    def test_breadcrumb_apikey_pattern_redacted(self):
        event = _make_event(breadcrumbs={"values": [{"message": "using apikey XYZ to connect"}]})
        result = _scrub_event(event, {})
        assert result["breadcrumbs"]["values"][0]["message"] == "[REDACTED]"

    def test_no_extra_or_breadcrumbs(self):
        assert _scrub_event({}, {}) == {}


class TestInitErrorReporting:
    def test_disabled_enabled_false(self):
        init_error_reporting(enabled=False)

    def test_disabled_empty_env_var(self, monkeypatch):
        monkeypatch.setenv("IROBOT_SENTRY_DSN", "")
        with patch("sentry_sdk.init") as mock_init:
            init_error_reporting(dsn="https://key@example.invalid/1")
        mock_init.assert_not_called()

    def test_no_dsn_no_env_is_noop(self, monkeypatch):
        monkeypatch.delenv("IROBOT_SENTRY_DSN", raising=False)
        monkeypatch.delenv("SENTRY_DSN", raising=False)
        with patch("sentry_sdk.init") as mock_init:
            init_error_reporting()
        mock_init.assert_not_called()

    def test_env_dsn_initializes(self, monkeypatch):
        monkeypatch.setenv("IROBOT_SENTRY_DSN", "https://key@example.invalid/1")
        with patch("sentry_sdk.init") as mock_init:
            init_error_reporting(environment="testing")
        mock_init.assert_called_once()
        kwargs = mock_init.call_args.kwargs
        assert kwargs["dsn"] == "https://key@example.invalid/1"
        assert kwargs["environment"] == "testing"
        assert kwargs["send_default_pii"] is False
        assert kwargs["before_send"] is _scrub_event


class TestScrubDict:
    def test_redacts_sensitive_keys(self):
        d = {"password": "secret", "batPct": 80, "username": "BLID"}
        assert _scrub_dict(d) == {"password": "[REDACTED]", "batPct": 80, "username": "[REDACTED]"}

    def test_nested(self):
        d = {"a": {"password": "p"}, "b": [{"token": "t"}, 1]}
        assert _scrub_dict(d) == {"a": {"password": "[REDACTED]"}, "b": [{"token": "[REDACTED]"}, 1]}

    def test_envelope_payload_scrubbed(self):
        env = {"direction": "sent", "topic": "cmd", "payload": {"password": "x", "command": "start"}}
        out = _scrub_envelope(env)
        assert out["payload"] == {"password": "[REDACTED]", "command": "start"}
        assert env["payload"]["password"] == "x"


class TestReportTelemetryDump:
    def test_returns_false_when_sentry_not_initialized(self):
        mock_sentry = MagicMock()
        mock_sentry.is_initialized.return_value = False
        with patch.dict(sys.modules, {"sentry_sdk": mock_sentry}):
            result = report_telemetry_dump("aa", [{"direction": "sent", "topic": "cmd", "payload": {}}])
        assert result is False
        mock_sentry.capture_message.assert_not_called()

    def test_sends_scrubbed_dump(self):
        messages = [
            {"direction": "sent", "topic": "cmd", "payload": {"command": "dock"}},
            {
                "direction": "received",
                "topic": "$aws/things/BLID/shadow/update",
                "payload": {"state": {"reported": {"batPct": 57, "password": "secret"}}},
            },
        ]
        result, mock_sentry = _with_fake_sentry(
            lambda: report_telemetry_dump("50:14:79:aa:bb:cc", messages)
        )
        assert result is True
        mock_sentry.capture_message.assert_called_once()
        call_args = mock_sentry.capture_message.call_args
        assert call_args[0][0] == "Telemetry dump (user-reported)"
        assert call_args[1]["level"] == "info"
        extras = call_args[1]["extras"]
        assert extras["message_count"] == 2
        assert "dock" in extras["telemetry_dump"]
        assert "57" in extras["telemetry_dump"]
        assert "secret" not in extras["telemetry_dump"]
        scope = mock_sentry.new_scope.return_value.__enter__.return_value
        scope.set_tag.assert_called_once_with("robot", "50:14:79:aa:bb:cc")

    def test_keeps_most_recent_messages(self):
        messages = [{"direction": "received", "topic": "t", "payload": {"i": i}} for i in range(10)]
        _, mock_sentry = _with_fake_sentry(
            lambda: report_telemetry_dump("aa", messages, max_messages=3)
        )
        extras = mock_sentry.capture_message.call_args[1]["extras"]
        assert extras["message_count"] == 3
        assert '"i": 9' in extras["telemetry_dump"]
        assert '"i": 0' not in extras["telemetry_dump"]
