from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path

import pytest

from vault_automation.automations_lib.base import Collaborators
from vault_automation.automations_lib.engine import AutomationEngine
from vault_automation.automations_lib.errors import (
    AlreadyExistsError,
    NotFoundError,
    PersistenceError,
)
from vault_automation.automations_lib.events import EVENT_CREATE, VaultEventHub
from vault_automation.automations_lib.models import (
    AutomationConfig,
    AutomationInstance,
    CreateNoteAction,
    FileTrigger,
    ScheduleTrigger,
    StartupTrigger,
    Trigger,
    VaultOpenedTrigger,
)
from vault_automation.state_store import EngineStateStore


class MemoryStore:
    def __init__(self) -> None:
        self.notes: dict[str, str] = {}

    async def exists(self, path: str) -> bool:
        return path in self.notes

    async def create(self, path: str, content: str) -> str:
        self.notes[path] = content
        return path

    async def modify(self, path: str, content: str) -> str:
        self.notes[path] = content
        return path


def make_automation(
    automation_id: str,
    trigger: Trigger,
    *,
    enabled: bool = True,
    note: str | None = None,
) -> AutomationInstance:
    return AutomationInstance(
        id=automation_id,
        name=automation_id.title(),
        config=AutomationConfig(
            triggers=(trigger,),
            actions=(CreateNoteAction(note or f"out/{automation_id}.md", "done"),),
        ),
        enabled=enabled,
    )


def build_engine(tmp_path: Path, **kwargs) -> tuple[AutomationEngine, MemoryStore]:
    store = MemoryStore()
    engine = AutomationEngine(
        collaborators=Collaborators(content_store=store),
        vault_root=tmp_path,
        state_store=EngineStateStore(tmp_path / "state.json"),
        now_fn=lambda: datetime(2024, 5, 10, 8, 0, tzinfo=timezone.utc),
        **kwargs,
    )
    return engine, store


@pytest.mark.asyncio
async def test_schedules_follow_enable_and_disable(tmp_path: Path) -> None:
    engine, _ = build_engine(tmp_path)
    engine.register_automation(make_automation("digest", ScheduleTrigger("0 9 * * *")))
    assert engine.scheduler.is_scheduled("digest") is False

    await engine.initialize()
    automation = engine.get_automation("digest")
    assert engine.scheduler.is_scheduled("digest") is True
    assert automation is not None
    assert automation.next_run == datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)

    engine.disable_automation("digest")
    assert engine.scheduler.is_scheduled("digest") is False
    assert automation.next_run is None

    engine.enable_automation("digest")
    assert engine.scheduler.is_scheduled("digest") is True

    await engine.shutdown()
    assert engine.scheduler.pending_ids() == []
    assert automation.next_run is None
    assert engine.initialized is False


@pytest.mark.asyncio
async def test_duplicate_and_missing_ids(tmp_path: Path) -> None:
    engine, _ = build_engine(tmp_path)
    engine.register_automation(make_automation("once", StartupTrigger()))

    with pytest.raises(AlreadyExistsError):
        engine.register_automation(make_automation("once", StartupTrigger()))
    with pytest.raises(NotFoundError):
        await engine.run_automation("ghost")
    with pytest.raises(NotFoundError):
        engine.enable_automation("ghost")

    engine.unregister_automation("ghost")
    engine.unregister_automation("once")
    assert engine.get_all_automations() == []


@pytest.mark.asyncio
async def test_state_survives_engine_restart(tmp_path: Path) -> None:
    engine, store = build_engine(tmp_path)
    engine.register_automation(make_automation("manual", VaultOpenedTrigger(), enabled=False))
    await engine.initialize()

    result = await engine.run_automation("manual")
    await engine.shutdown()

    assert result.success is True
    assert store.notes == {"out/manual.md": "done"}

    restarted, _ = build_engine(tmp_path)
    await restarted.initialize()
    automation = restarted.get_automation("manual")

    assert automation is not None
    assert automation.enabled is False
    assert automation.execution_count == 1
    assert automation.last_result == result
    assert [entry.automation_id for entry in restarted.get_history()] == ["manual"]
    assert len(restarted.get_history_for_automation("manual")) == 1

    restarted.clear_history()
    assert restarted.get_history() == []
    assert EngineStateStore(tmp_path / "state.json").load().history == []


@pytest.mark.asyncio
async def test_startup_and_vault_opened_triggers_fire_once(tmp_path: Path) -> None:
    hub = VaultEventHub()
    engine, store = build_engine(tmp_path, hub=hub)
    engine.register_automation(make_automation("boot", StartupTrigger()))
    engine.register_automation(make_automation("opened", VaultOpenedTrigger()))

    await engine.initialize()
    hub.emit("vault-opened")
    hub.emit("vault-opened")
    await engine.drain()

    assert sorted(store.notes) == ["out/boot.md", "out/opened.md"]
    assert len(engine.get_history()) == 2


@pytest.mark.asyncio
async def test_file_events_from_hub_run_matching_automations(tmp_path: Path) -> None:
    hub = VaultEventHub()
    engine, _ = build_engine(tmp_path, hub=hub)
    engine.register_automation(make_automation("inbox", FileTrigger("file-created", "inbox/*.md")))
    await engine.initialize()

    hub.emit(EVENT_CREATE, "inbox/idea.md")
    hub.emit(EVENT_CREATE, "journal/day.md")
    await engine.drain()

    history = engine.get_history_for_automation("inbox")
    assert len(history) == 1
    assert history[0].result.trigger == FileTrigger("file-created", "inbox/*.md")

    await engine.shutdown()
    hub.emit(EVENT_CREATE, "inbox/later.md")
    await engine.drain()
    assert len(engine.get_history()) == 1


@pytest.mark.asyncio
async def test_definition_directories_are_synced_on_initialize(tmp_path: Path) -> None:
    definition = tmp_path / "automations" / "boot.automation.md"
    definition.parent.mkdir()
    definition.write_text(
        "---\n"
        "name: Boot note\n"
        "runOnInstall: true\n"
        "triggers:\n"
        "  - type: vault-opened\n"
        "actions:\n"
        "  - type: create-note\n"
        "    path: out/boot.md\n"
        "---\n",
        encoding="utf-8",
    )
    engine, store = build_engine(tmp_path)

    report = await engine.initialize(["automations"])
    await engine.drain()

    assert len(report.registered) == 1
    assert store.notes == {"out/boot.md": ""}

    removed = await engine.update_directories([])
    assert removed.removed == report.registered
    assert engine.get_all_automations() == []


class BrokenStateStore(EngineStateStore):
    def write(self, body: str) -> None:
        raise PersistenceError("disk full")


@pytest.mark.asyncio
async def test_save_failures_are_logged_and_engine_keeps_running(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    store = MemoryStore()
    engine = AutomationEngine(
        collaborators=Collaborators(content_store=store),
        vault_root=tmp_path,
        state_store=BrokenStateStore(tmp_path / "state.json"),
    )

    with caplog.at_level(logging.WARNING):
        await engine.initialize()
        engine.register_automation(make_automation("manual", VaultOpenedTrigger()))
        result = await engine.run_automation("manual")
        engine.disable_automation("manual")
        await engine.shutdown()

    automation = engine.get_automation("manual")
    assert result.success is True
    assert automation is not None
    assert automation.execution_count == 1
    assert automation.enabled is False
    assert store.notes == {"out/manual.md": "done"}
    assert [entry.automation_id for entry in engine.get_history()] == ["manual"]
    assert (tmp_path / "state.json").exists() is False
    assert any(getattr(record, "event", None) == "state_save_error" for record in caplog.records)
