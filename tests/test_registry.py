from __future__ import annotations

import pytest

from vault_automation.automations_lib.errors import (
    AlreadyExistsError,
    NotFoundError,
    ValidationError,
)
from vault_automation.automations_lib.models import (
    AutomationConfig,
    AutomationInstance,
    RunShellAction,
    ScheduleTrigger,
    StartupTrigger,
)
from vault_automation.automations_lib.registry import AutomationRegistry


class RecordingHooks:
    def __init__(self) -> None:
        self.activated: list[str] = []
        self.deactivated: list[str] = []
        self.changes = 0

    def activate(self, automation: AutomationInstance) -> None:
        self.activated.append(automation.id)

    def deactivate(self, automation: AutomationInstance) -> None:
        self.deactivated.append(automation.id)

    def change(self) -> None:
        self.changes += 1


def make_automation(automation_id: str = "nightly", *, enabled: bool = True) -> AutomationInstance:
    return AutomationInstance(
        id=automation_id,
        name=automation_id.title(),
        config=AutomationConfig(
            triggers=(ScheduleTrigger("0 3 * * *"),),
            actions=(RunShellAction("echo hi"),),
        ),
        enabled=enabled,
    )


def build_registry() -> tuple[AutomationRegistry, RecordingHooks]:
    hooks = RecordingHooks()
    registry = AutomationRegistry(
        on_activate=hooks.activate,
        on_deactivate=hooks.deactivate,
        on_change=hooks.change,
    )
    return registry, hooks


def test_register_activates_enabled_automations_only() -> None:
    registry, hooks = build_registry()

    registry.register(make_automation("nightly"))
    registry.register(make_automation("paused", enabled=False))

    assert hooks.activated == ["nightly"]
    assert hooks.changes == 2
    assert [item.id for item in registry.enabled()] == ["nightly"]
    assert len(registry) == 2


def test_register_rejects_duplicates_and_invalid_config() -> None:
    registry, _ = build_registry()
    registry.register(make_automation("nightly"))

    with pytest.raises(AlreadyExistsError, match="Automation with ID nightly already exists"):
        registry.register(make_automation("nightly"))

    broken = make_automation("broken")
    broken.config = AutomationConfig(triggers=(StartupTrigger(),), actions=())
    with pytest.raises(ValidationError):
        registry.register(broken)
    assert "broken" not in registry


def test_unregister_is_idempotent() -> None:
    registry, hooks = build_registry()
    registry.register(make_automation("nightly"))

    removed = registry.unregister("nightly")

    assert removed is not None and removed.id == "nightly"
    assert hooks.deactivated == ["nightly"]
    assert registry.unregister("nightly") is None
    assert hooks.deactivated == ["nightly"]


def test_enable_and_disable_only_fire_hooks_on_transition() -> None:
    registry, hooks = build_registry()
    registry.register(make_automation("paused", enabled=False))

    registry.enable("paused")
    registry.enable("paused")
    registry.disable("paused")
    registry.disable("paused")

    assert hooks.activated == ["paused"]
    assert hooks.deactivated == ["paused"]
    assert registry.require("paused").enabled is False


def test_missing_ids_raise_not_found() -> None:
    registry, _ = build_registry()

    with pytest.raises(NotFoundError, match="Automation ghost not found"):
        registry.enable("ghost")
    with pytest.raises(NotFoundError):
        registry.update("ghost", name="x")
    assert registry.get("ghost") is None


def test_update_mutates_instance_in_place() -> None:
    registry, hooks = build_registry()
    automation = make_automation("nightly")
    registry.register(automation)
    automation.execution_count = 7

    updated = registry.update("nightly", name="Renamed", description="new")

    assert updated is automation
    assert automation.name == "Renamed"
    assert automation.description == "new"
    assert automation.execution_count == 7
    assert hooks.deactivated == ["nightly"]
    assert hooks.activated == ["nightly", "nightly"]


def test_update_rejects_unknown_fields() -> None:
    registry, _ = build_registry()
    registry.register(make_automation("nightly"))

    with pytest.raises(ValidationError, match="Unknown automation field"):
        registry.update("nightly", colour="blue")
    with pytest.raises(ValidationError, match="config must be an AutomationConfig"):
        registry.update("nightly", config={"triggers": []})
