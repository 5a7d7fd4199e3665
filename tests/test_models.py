from __future__ import annotations

from datetime import datetime, timezone
import json

import pytest

from vault_automation.automations_lib.errors import ValidationError
from vault_automation.automations_lib.models import (
    ORIGIN_DEFINITION,
    ActionExecutionResult,
    AutomationConfig,
    AutomationExecutionResult,
    AutomationInstance,
    CreateNoteAction,
    EngineState,
    FileTrigger,
    HistoryEntry,
    RunAgentAction,
    RunShellAction,
    ScheduleTrigger,
    TagAddedTrigger,
    action_from_dict,
    action_to_dict,
    config_from_dict,
    trigger_from_dict,
    trigger_to_dict,
)


def build_state() -> EngineState:
    ran_at = datetime(2024, 5, 10, 9, 0, 1, tzinfo=timezone.utc)
    trigger = ScheduleTrigger("0 9 * * *")
    result = AutomationExecutionResult(
        success=False,
        timestamp=ran_at,
        trigger=trigger,
        action_results=(
            ActionExecutionResult(
                action=RunAgentAction("summarizer", {"topic": "daily"}),
                success=True,
                result={"response": "ok"},
                duration_ms=12,
            ),
            ActionExecutionResult(
                action=RunShellAction("exit 1"),
                success=False,
                error="Command exited with code 1",
                duration_ms=3,
            ),
        ),
        error="Command exited with code 1",
    )
    automation = AutomationInstance(
        id="definition-daily-1234abcd",
        name="Daily",
        description="Daily digest",
        config=AutomationConfig(
            triggers=(trigger, FileTrigger("file-created", "inbox/*.md", delay_ms=500)),
            actions=(
                RunAgentAction("summarizer", {"topic": "daily"}),
                CreateNoteAction("digests/today.md", "# Digest"),
            ),
            enabled=True,
        ),
        enabled=True,
        last_run=ran_at,
        next_run=datetime(2024, 5, 11, 9, 0, tzinfo=timezone.utc),
        last_result=result,
        execution_count=4,
        origin=ORIGIN_DEFINITION,
        source_path="automations/daily.automation.md",
        source_format="automation-markdown",
        declared_enabled=True,
    )
    return EngineState(
        automations={automation.id: automation},
        history=[HistoryEntry(automation.id, result, ran_at)],
    )


def test_engine_state_round_trip_is_exact() -> None:
    state = build_state()

    payload = json.loads(json.dumps(state.to_dict()))
    restored = EngineState.from_dict(payload)

    assert restored == state
    assert json.dumps(restored.to_dict(), sort_keys=True) == json.dumps(
        state.to_dict(), sort_keys=True
    )


def test_timestamps_are_serialized_as_utc_iso() -> None:
    payload = build_state().to_dict()
    automation = next(iter(payload["automations"].values()))

    assert automation["last_run"] == "2024-05-10T09:00:01+00:00"
    assert payload["history"][0]["timestamp"] == "2024-05-10T09:00:01+00:00"


def test_trigger_dict_form_uses_camel_case_keys() -> None:
    trigger = trigger_from_dict({"type": "tag-added", "tag": "review", "delay": 250})

    assert trigger == TagAddedTrigger("review", delay_ms=250)
    assert trigger_to_dict(trigger) == {"type": "tag-added", "tag": "review", "delay": 250}
    assert trigger_to_dict(ScheduleTrigger("0 9 * * *")) == {
        "type": "schedule",
        "schedule": "0 9 * * *",
    }


def test_action_dict_form_round_trips() -> None:
    payload = {"type": "run-prompt", "promptId": "digest", "input": {"tone": "short"}}

    action = action_from_dict(payload)

    assert action.prompt_id == "digest"
    assert action_to_dict(action) == payload


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"type": "schedule"}, "Schedule trigger must have a schedule property"),
        ({"type": "file-modified"}, "file-modified trigger must have a pattern property"),
        ({"type": "tag-added"}, "Tag-added trigger must have a tag property"),
        ({"type": "comet-impact"}, "Unknown trigger type: comet-impact"),
    ],
)
def test_invalid_triggers_are_rejected(payload: dict, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        trigger_from_dict(payload)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"type": "run-agent"}, "run-agent action must have an agentId"),
        ({"type": "run-skill"}, "run-skill action must have a skillId"),
        ({"type": "create-note"}, "create-note action must have a path"),
        ({"type": "run-shell"}, "run-shell action must have a command"),
    ],
)
def test_invalid_actions_are_rejected(payload: dict, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        action_from_dict(payload)


def test_config_requires_trigger_and_action() -> None:
    with pytest.raises(ValidationError, match="at least one trigger"):
        config_from_dict({"triggers": [], "actions": [{"type": "run-shell", "command": "ls"}]})
    with pytest.raises(ValidationError, match="at least one action"):
        config_from_dict({"triggers": [{"type": "startup"}], "actions": []})


def test_config_flags_default_to_false() -> None:
    config = config_from_dict(
        {"triggers": [{"type": "startup"}], "actions": [{"type": "run-shell", "command": "ls"}]}
    )

    assert config.enabled is False
    assert config.run_on_install is False
