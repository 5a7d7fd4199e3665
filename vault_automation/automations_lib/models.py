from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
from typing import Any, Union

from vault_automation.automations_lib.errors import ValidationError


ORIGIN_MANUAL = "manual"
ORIGIN_EXTENSION = "extension"
ORIGIN_DEFINITION = "external-definition"
ORIGINS = (ORIGIN_MANUAL, ORIGIN_EXTENSION, ORIGIN_DEFINITION)

SOURCE_FORMAT_MARKDOWN = "automation-markdown"

FILE_TRIGGER_TYPES = ("file-created", "file-modified", "file-deleted")


# Triggers


@dataclass(frozen=True)
class ScheduleTrigger:
    schedule: str
    delay_ms: int = 0
    type: str = field(default="schedule", init=False)


@dataclass(frozen=True)
class FileTrigger:
    type: str
    pattern: str
    delay_ms: int = 0


@dataclass(frozen=True)
class TagAddedTrigger:
    tag: str
    delay_ms: int = 0
    type: str = field(default="tag-added", init=False)


@dataclass(frozen=True)
class VaultOpenedTrigger:
    delay_ms: int = 0
    type: str = field(default="vault-opened", init=False)


@dataclass(frozen=True)
class StartupTrigger:
    delay_ms: int = 0
    type: str = field(default="startup", init=False)


Trigger = Union[
    ScheduleTrigger,
    FileTrigger,
    TagAddedTrigger,
    VaultOpenedTrigger,
    StartupTrigger,
]


# Actions


@dataclass(frozen=True)
class RunAgentAction:
    agent_id: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="run-agent", init=False)


@dataclass(frozen=True)
class RunPromptAction:
    prompt_id: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="run-prompt", init=False)


@dataclass(frozen=True)
class RunSkillAction:
    skill_id: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="run-skill", init=False)


@dataclass(frozen=True)
class CreateNoteAction:
    path: str
    template: str | None = None
    type: str = field(default="create-note", init=False)


@dataclass(frozen=True)
class UpdateNoteAction:
    path: str
    template: str | None = None
    type: str = field(default="update-note", init=False)


@dataclass(frozen=True)
class RunShellAction:
    command: str
    input: dict[str, Any] = field(default_factory=dict)
    type: str = field(default="run-shell", init=False)


Action = Union[
    RunAgentAction,
    RunPromptAction,
    RunSkillAction,
    CreateNoteAction,
    UpdateNoteAction,
    RunShellAction,
]


@dataclass(frozen=True)
class AutomationConfig:
    triggers: tuple[Trigger, ...]
    actions: tuple[Action, ...]
    enabled: bool = False
    run_on_install: bool = False


@dataclass(frozen=True)
class ActionExecutionResult:
    action: Action
    success: bool
    result: Any = None
    error: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class AutomationExecutionResult:
    success: bool
    timestamp: datetime
    trigger: Trigger
    action_results: tuple[ActionExecutionResult, ...]
    error: str | None = None


@dataclass(frozen=True)
class HistoryEntry:
    automation_id: str
    result: AutomationExecutionResult
    timestamp: datetime


@dataclass
class AutomationInstance:
    id: str
    name: str
    config: AutomationConfig
    description: str | None = None
    enabled: bool = False
    last_run: datetime | None = None
    next_run: datetime | None = None
    last_result: AutomationExecutionResult | None = None
    execution_count: int = 0
    origin: str = ORIGIN_MANUAL
    source_path: str | None = None
    source_format: str | None = None
    # Last `enabled` value read from the backing definition file.
    declared_enabled: bool | None = None


@dataclass
class ExecutionContext:
    automation: AutomationInstance
    trigger: Trigger
    start_time: datetime
    action_results: list[ActionExecutionResult] = field(default_factory=list)
    trigger_data: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def utc_now() -> datetime:
        return datetime.now(timezone.utc)

    def previous_output(self) -> Any:
        if not self.action_results:
            return None
        last = self.action_results[-1]
        return last.result if last.success else None


@dataclass
class EngineState:
    automations: dict[str, AutomationInstance] = field(default_factory=dict)
    history: list[HistoryEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "automations": {
                automation_id: automation_to_dict(instance)
                for automation_id, instance in self.automations.items()
            },
            "history": [history_entry_to_dict(entry) for entry in self.history],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> EngineState:
        raw_automations = payload.get("automations")
        raw_history = payload.get("history")
        automations: dict[str, AutomationInstance] = {}
        if isinstance(raw_automations, dict):
            for automation_id, item in raw_automations.items():
                instance = automation_from_dict(item)
                automations[str(automation_id)] = instance
        history: list[HistoryEntry] = []
        if isinstance(raw_history, list):
            history = [history_entry_from_dict(item) for item in raw_history]
        return cls(automations=automations, history=history)


# Declarative (camelCase) form used by definition files, extension manifests and
# the persisted config block.


def trigger_from_dict(payload: Any) -> Trigger:
    if not isinstance(payload, dict):
        raise ValidationError("Trigger must be an object")
    trigger_type = str(payload.get("type") or "").strip()
    if not trigger_type:
        raise ValidationError("Trigger must have a type")
    delay_ms = _read_delay(payload.get("delay"))
    if trigger_type == "schedule":
        schedule = str(payload.get("schedule") or "").strip()
        if not schedule:
            raise ValidationError("Schedule trigger must have a schedule property")
        return ScheduleTrigger(schedule=schedule, delay_ms=delay_ms)
    if trigger_type in FILE_TRIGGER_TYPES:
        pattern = str(payload.get("pattern") or "").strip()
        if not pattern:
            raise ValidationError(f"{trigger_type} trigger must have a pattern property")
        return FileTrigger(type=trigger_type, pattern=pattern, delay_ms=delay_ms)
    if trigger_type == "tag-added":
        tag = str(payload.get("tag") or "").strip()
        if not tag:
            raise ValidationError("Tag-added trigger must have a tag property")
        return TagAddedTrigger(tag=tag, delay_ms=delay_ms)
    if trigger_type == "vault-opened":
        return VaultOpenedTrigger(delay_ms=delay_ms)
    if trigger_type == "startup":
        return StartupTrigger(delay_ms=delay_ms)
    raise ValidationError(f"Unknown trigger type: {trigger_type}")


def trigger_to_dict(trigger: Trigger) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": trigger.type}
    if isinstance(trigger, ScheduleTrigger):
        payload["schedule"] = trigger.schedule
    elif isinstance(trigger, FileTrigger):
        payload["pattern"] = trigger.pattern
    elif isinstance(trigger, TagAddedTrigger):
        payload["tag"] = trigger.tag
    elif not isinstance(trigger, (VaultOpenedTrigger, StartupTrigger)):
        raise ValidationError(f"Unknown trigger type: {type(trigger).__name__}")
    if trigger.delay_ms > 0:
        payload["delay"] = trigger.delay_ms
    return payload


_ACTION_ID_FIELDS = {
    "run-agent": ("agentId", RunAgentAction),
    "run-prompt": ("promptId", RunPromptAction),
    "run-skill": ("skillId", RunSkillAction),
    "run-shell": ("command", RunShellAction),
}


def action_from_dict(payload: Any) -> Action:
    if not isinstance(payload, dict):
        raise ValidationError("Action must be an object")
    action_type = str(payload.get("type") or "").strip()
    if not action_type:
        raise ValidationError("Action must have a type")
    if action_type in _ACTION_ID_FIELDS:
        key, action_cls = _ACTION_ID_FIELDS[action_type]
        identifier = str(payload.get(key) or "").strip()
        if not identifier:
            article = "an" if key[0] in "aeiou" else "a"
            raise ValidationError(f"{action_type} action must have {article} {key}")
        return action_cls(identifier, _read_input(payload.get("input"), action_type))
    if action_type in ("create-note", "update-note"):
        path = str(payload.get("path") or "").strip()
        if not path:
            raise ValidationError(f"{action_type} action must have a path")
        template = payload.get("template")
        template_text = None if template is None else str(template)
        if action_type == "create-note":
            return CreateNoteAction(path=path, template=template_text)
        return UpdateNoteAction(path=path, template=template_text)
    raise ValidationError(f"Unknown action type: {action_type}")


def action_to_dict(action: Action) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": action.type}
    if isinstance(action, RunAgentAction):
        payload["agentId"] = action.agent_id
    elif isinstance(action, RunPromptAction):
        payload["promptId"] = action.prompt_id
    elif isinstance(action, RunSkillAction):
        payload["skillId"] = action.skill_id
    elif isinstance(action, RunShellAction):
        payload["command"] = action.command
    elif isinstance(action, (CreateNoteAction, UpdateNoteAction)):
        payload["path"] = action.path
        if action.template is not None:
            payload["template"] = action.template
        return payload
    else:
        raise ValidationError(f"Unknown action type: {type(action).__name__}")
    if action.input:
        payload["input"] = dict(action.input)
    return payload


def config_from_dict(payload: Any) -> AutomationConfig:
    if not isinstance(payload, dict):
        raise ValidationError("Automation config must be an object")
    raw_triggers = payload.get("triggers")
    raw_actions = payload.get("actions")
    if raw_triggers is not None and not isinstance(raw_triggers, list):
        raise ValidationError("Automation triggers must be a list")
    if raw_actions is not None and not isinstance(raw_actions, list):
        raise ValidationError("Automation actions must be a list")
    config = AutomationConfig(
        triggers=tuple(trigger_from_dict(item) for item in raw_triggers or []),
        actions=tuple(action_from_dict(item) for item in raw_actions or []),
        enabled=_read_flag(payload.get("enabled"), "enabled"),
        run_on_install=_read_flag(payload.get("runOnInstall"), "runOnInstall"),
    )
    validate_config(config)
    return config


def config_to_dict(config: AutomationConfig) -> dict[str, Any]:
    return {
        "triggers": [trigger_to_dict(item) for item in config.triggers],
        "actions": [action_to_dict(item) for item in config.actions],
        "enabled": config.enabled,
        "runOnInstall": config.run_on_install,
    }


def validate_config(config: AutomationConfig) -> None:
    if not config.triggers:
        raise ValidationError("Automation must have at least one trigger")
    if not config.actions:
        raise ValidationError("Automation must have at least one action")


# Persisted engine state.


def automation_to_dict(instance: AutomationInstance) -> dict[str, Any]:
    return {
        "id": instance.id,
        "name": instance.name,
        "description": instance.description,
        "config": config_to_dict(instance.config),
        "enabled": instance.enabled,
        "last_run": _dt_to_iso(instance.last_run),
        "next_run": _dt_to_iso(instance.next_run),
        "last_result": (
            execution_result_to_dict(instance.last_result)
            if instance.last_result is not None
            else None
        ),
        "execution_count": instance.execution_count,
        "origin": instance.origin,
        "source_path": instance.source_path,
        "source_format": instance.source_format,
        "declared_enabled": instance.declared_enabled,
    }


def automation_from_dict(payload: Any) -> AutomationInstance:
    if not isinstance(payload, dict):
        raise ValidationError("Automation must be an object")
    automation_id = str(payload.get("id") or "").strip()
    if not automation_id:
        raise ValidationError("Automation must have an id")
    origin = str(payload.get("origin") or ORIGIN_MANUAL)
    if origin not in ORIGINS:
        raise ValidationError(f"Unknown automation origin: {origin}")
    raw_last_result = payload.get("last_result")
    declared_enabled = payload.get("declared_enabled")
    return AutomationInstance(
        id=automation_id,
        name=str(payload.get("name") or automation_id),
        description=payload.get("description"),
        config=config_from_dict(payload.get("config")),
        enabled=bool(payload.get("enabled", False)),
        last_run=_dt_from_iso(payload.get("last_run")),
        next_run=_dt_from_iso(payload.get("next_run")),
        last_result=(
            execution_result_from_dict(raw_last_result)
            if isinstance(raw_last_result, dict)
            else None
        ),
        execution_count=int(payload.get("execution_count") or 0),
        origin=origin,
        source_path=payload.get("source_path"),
        source_format=payload.get("source_format"),
        declared_enabled=None if declared_enabled is None else bool(declared_enabled),
    )


def execution_result_to_dict(result: AutomationExecutionResult) -> dict[str, Any]:
    return {
        "success": result.success,
        "timestamp": _dt_to_iso(result.timestamp),
        "trigger": trigger_to_dict(result.trigger),
        "action_results": [
            {
                "action": action_to_dict(item.action),
                "success": item.success,
                "result": _json_safe(item.result),
                "error": item.error,
                "duration_ms": item.duration_ms,
            }
            for item in result.action_results
        ],
        "error": result.error,
    }


def execution_result_from_dict(payload: dict[str, Any]) -> AutomationExecutionResult:
    timestamp = _dt_from_iso(payload.get("timestamp"))
    if timestamp is None:
        raise ValidationError("Execution result must have a timestamp")
    return AutomationExecutionResult(
        success=bool(payload.get("success")),
        timestamp=timestamp,
        trigger=trigger_from_dict(payload.get("trigger")),
        action_results=tuple(
            ActionExecutionResult(
                action=action_from_dict(item.get("action")),
                success=bool(item.get("success")),
                result=item.get("result"),
                error=item.get("error"),
                duration_ms=int(item.get("duration_ms") or 0),
            )
            for item in payload.get("action_results") or []
            if isinstance(item, dict)
        ),
        error=payload.get("error"),
    )


def history_entry_to_dict(entry: HistoryEntry) -> dict[str, Any]:
    return {
        "automation_id": entry.automation_id,
        "result": execution_result_to_dict(entry.result),
        "timestamp": _dt_to_iso(entry.timestamp),
    }


def history_entry_from_dict(payload: Any) -> HistoryEntry:
    if not isinstance(payload, dict):
        raise ValidationError("History entry must be an object")
    result = execution_result_from_dict(payload.get("result") or {})
    return HistoryEntry(
        automation_id=str(payload.get("automation_id") or ""),
        result=result,
        timestamp=_dt_from_iso(payload.get("timestamp")) or result.timestamp,
    )


def describe_trigger(trigger: Trigger) -> str:
    if isinstance(trigger, ScheduleTrigger):
        summary = f"schedule `{trigger.schedule}`"
    elif isinstance(trigger, FileTrigger):
        summary = f"{trigger.type} `{trigger.pattern}`"
    elif isinstance(trigger, TagAddedTrigger):
        summary = f"tag-added `{trigger.tag}`"
    else:
        summary = trigger.type
    if trigger.delay_ms > 0:
        summary += f" (delay {trigger.delay_ms}ms)"
    return summary


def describe_action(action: Action) -> str:
    if isinstance(action, RunAgentAction):
        return f"run-agent `{action.agent_id}`"
    if isinstance(action, RunPromptAction):
        return f"run-prompt `{action.prompt_id}`"
    if isinstance(action, RunSkillAction):
        return f"run-skill `{action.skill_id}`"
    if isinstance(action, RunShellAction):
        return f"run-shell `{action.command}`"
    return f"{action.type} `{action.path}`"


def _read_delay(raw: Any) -> int:
    if raw is None or raw == "":
        return 0
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Trigger delay must be an integer, got {raw!r}") from exc
    if value < 0:
        raise ValidationError("Trigger delay cannot be negative")
    return value


def _read_input(raw: Any, action_type: str) -> dict[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError(f"{action_type} action input must be an object")
    return {str(key): value for key, value in raw.items()}


def _read_flag(raw: Any, name: str) -> bool:
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    raise ValidationError(f"{name} must be true or false")


def _dt_to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _dt_from_iso(raw: Any) -> datetime | None:
    if not raw:
        return None
    try:
        value = datetime.fromisoformat(str(raw))
    except ValueError:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value
