#!/usr/bin/env python3
"""
Unit tests for action execution against a recording host
"""
from pathlib import Path
import sys

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from stackline.core.actions import ActionExecutor
from stackline.shared.config import ActionConfig, ConfirmationConfig


class RecordingHost:
    def __init__(self, fail_on=()):
        self.calls = []
        self.fail_on = set(fail_on)

    def invoke_action(self, kind, payload):
        self.calls.append((kind, payload))
        if kind in self.fail_on:
            raise RuntimeError(f"{kind} unavailable")


HAPTIC = ("haptic", {"type": "light"})


class TestDispatch:
    """Each action kind maps onto the right host invocation"""

    def test_more_info_uses_default_entity(self):
        host = RecordingHost()
        executor = ActionExecutor(host, default_entity="sensor.power")

        assert executor.execute(ActionConfig(action="more-info"))
        assert host.calls == [("more-info", {"entity_id": "sensor.power"}), HAPTIC]

    def test_more_info_explicit_entity(self):
        host = RecordingHost()
        ActionExecutor(host, default_entity="sensor.power").execute(
            ActionConfig(action="more-info", entity="sensor.other")
        )

        assert host.calls[0] == ("more-info", {"entity_id": "sensor.other"})

    def test_toggle(self):
        host = RecordingHost()
        ActionExecutor(host).execute(ActionConfig(action="toggle", entity="switch.fan"))

        kind, payload = host.calls[0]
        assert kind == "call-service"
        assert payload["domain"] == "homeassistant"
        assert payload["service"] == "toggle"
        assert payload["data"] == {"entity_id": "switch.fan"}

    def test_navigate(self):
        host = RecordingHost()
        ActionExecutor(host).execute(ActionConfig(action="navigate", navigation_path="/energy"))

        assert host.calls[0] == ("navigate", {"path": "/energy", "replace": False})

    def test_url(self):
        host = RecordingHost()
        ActionExecutor(host).execute(ActionConfig(action="url", url_path="https://example.org"))

        assert host.calls[0] == ("open-url", {"url": "https://example.org", "target": "_blank"})

    def test_perform_action(self):
        host = RecordingHost()
        ActionExecutor(host).execute(ActionConfig(
            action="perform-action",
            perform_action="light.turn_on",
            data={"brightness": 128},
            target={"entity_id": "light.kitchen"},
        ))

        assert host.calls[0] == ("call-service", {
            "domain": "light",
            "service": "turn_on",
            "data": {"brightness": 128},
            "target": {"entity_id": "light.kitchen"},
        })

    def test_malformed_perform_action_is_noop(self):
        """A target without a dot only logs; haptic still follows"""
        host = RecordingHost()

        assert ActionExecutor(host).execute(ActionConfig(action="perform-action", perform_action="lighton"))
        assert host.calls == [HAPTIC]

    def test_assist(self):
        host = RecordingHost()
        ActionExecutor(host).execute(ActionConfig(action="assist"))

        assert host.calls[0][0] == "show-dialog"
        assert host.calls[0][1]["dialog_tag"] == "dialog-voice-command"


class TestGuards:
    """Skipped actions and confirmation"""

    def test_none_action(self):
        host = RecordingHost()

        assert not ActionExecutor(host).execute(ActionConfig(action="none"))
        assert host.calls == []

    def test_no_host(self):
        assert not ActionExecutor(None).execute(ActionConfig(action="assist"))

    def test_confirmation_accepted(self):
        host = RecordingHost()
        prompts = []

        def confirm(text):
            prompts.append(text)
            return True

        action = ActionConfig(action="assist", confirmation=ConfirmationConfig(text="Sure?"))

        assert ActionExecutor(host, confirm=confirm).execute(action)
        assert prompts == ["Sure?"]
        assert host.calls[-1] == HAPTIC

    def test_confirmation_declined(self):
        host = RecordingHost()
        action = ActionConfig(action="assist", confirmation=ConfirmationConfig(text="Sure?"))

        assert not ActionExecutor(host, confirm=lambda _t: False).execute(action)
        assert host.calls == []

    def test_confirmation_without_handler_declines(self):
        host = RecordingHost()
        action = ActionConfig(action="assist", confirmation=ConfirmationConfig(text="Sure?"))

        assert not ActionExecutor(host).execute(action)
        assert host.calls == []

    def test_host_failure_is_swallowed(self):
        """A failing host call is logged and the haptic is still sent"""
        host = RecordingHost(fail_on={"navigate"})

        assert ActionExecutor(host).execute(ActionConfig(action="navigate", navigation_path="/x"))
        assert host.calls[-1] == HAPTIC
