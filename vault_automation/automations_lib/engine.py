from __future__ import annotations

import asyncio
from datetime import datetime, timezone, tzinfo
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from vault_automation.automations_lib.base import Collaborators, Notifier
from vault_automation.automations_lib.errors import PersistenceError, ValidationError
from vault_automation.automations_lib.events import EventRouter, VaultEventHub
from vault_automation.automations_lib.history import (
    DEFAULT_HISTORY_CAPACITY,
    AuditLog,
    ExecutionHistory,
)
from vault_automation.automations_lib.models import (
    AutomationExecutionResult,
    AutomationInstance,
    EngineState,
    HistoryEntry,
    Trigger,
)
from vault_automation.automations_lib.orchestrator import ExecutionPipeline
from vault_automation.automations_lib.registry import AutomationRegistry
from vault_automation.automations_lib.scheduler import TriggerScheduler
from vault_automation.automations_lib.sync import DefinitionSync, SyncReport
from vault_automation.automations_lib.watcher import DefinitionWatcher

if TYPE_CHECKING:
    from vault_automation.state_store import EngineStateStore


logger = logging.getLogger(__name__)


class AutomationEngine:
    """Owns the registry, scheduler, router and pipeline for one vault.

    Construct one per process and pass it to whoever needs it. Tests build a
    fresh engine instead of resetting a shared one.
    """

    def __init__(
        self,
        *,
        collaborators: Collaborators,
        vault_root: str | Path = ".",
        state_store: EngineStateStore | None = None,
        audit_log: AuditLog | None = None,
        notifier: Notifier | None = None,
        hub: VaultEventHub | None = None,
        tz: tzinfo = timezone.utc,
        history_limit: int = DEFAULT_HISTORY_CAPACITY,
        watch_definitions: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._state_store = state_store
        self._hub = hub
        self._initialized = False
        self._tasks: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()

        self._registry = AutomationRegistry()
        self._history = ExecutionHistory(history_limit)
        self._pipeline = ExecutionPipeline(
            collaborators=collaborators,
            history=self._history,
            persist=self._save_state,
            audit_log=audit_log,
            notifier=notifier,
            sleep=sleep,
        )
        self._scheduler = TriggerScheduler(
            registry=self._registry,
            runner=self._pipeline.execute,
            tz=tz,
            now_fn=now_fn,
        )
        self._router = EventRouter(registry=self._registry, dispatch=self._pipeline.execute)
        self._sync = DefinitionSync(
            root=vault_root,
            registry=self._registry,
            on_install=self._run_on_install,
        )
        self._watcher = DefinitionWatcher(self._sync) if watch_definitions else None
        self._registry.bind(
            on_activate=self._activate,
            on_deactivate=self._deactivate,
            on_change=self._persist,
        )

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def hub(self) -> VaultEventHub | None:
        return self._hub

    @property
    def registry(self) -> AutomationRegistry:
        return self._registry

    @property
    def scheduler(self) -> TriggerScheduler:
        return self._scheduler

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def sync(self) -> DefinitionSync:
        return self._sync

    # Lifecycle

    async def initialize(self, directories: Iterable[str] = ()) -> SyncReport:
        if self._initialized:
            return await self.update_directories(directories)

        if self._state_store is not None:
            state = self._state_store.load()
            # Registrations made before initialize win over persisted copies.
            self._registry.load({**state.automations, **self._registry.snapshot()})
            self._history.load(state.history)

        self._scheduler.reopen()
        self._initialized = True
        for automation in self._registry.enabled():
            self._scheduler.schedule(automation)
        if self._hub is not None:
            self._router.attach(self._hub)

        report = await self._sync.update_directories(directories)
        if self._watcher is not None:
            self._watcher.start()
        await self._save_state()
        self._router.fire_startup()
        logger.info(
            "automation engine initialized",
            extra={
                "event": "engine_initialized",
                "result_count": len(self._registry),
                "source": ",".join(self._sync.directories),
            },
        )
        return report

    async def shutdown(self) -> None:
        if not self._initialized:
            return
        self._router.detach()
        self._scheduler.close()
        if self._watcher is not None:
            self._watcher.stop()
        for automation in self._registry.all():
            automation.next_run = None
        await self._save_state()
        self._initialized = False
        logger.info("automation engine shut down", extra={"event": "engine_shutdown"})

    async def update_directories(self, directories: Iterable[str]) -> SyncReport:
        return await self._sync.update_directories(directories)

    async def drain(self) -> None:
        """Wait for every in-flight triggered run to finish."""
        await self._router.drain()
        if self._watcher is not None:
            await self._watcher.drain()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Registry surface

    def register_automation(self, automation: AutomationInstance) -> AutomationInstance:
        self._registry.register(automation)
        return automation

    def unregister_automation(self, automation_id: str) -> None:
        self._registry.unregister(automation_id)

    def enable_automation(self, automation_id: str) -> AutomationInstance:
        return self._registry.enable(automation_id)

    def disable_automation(self, automation_id: str) -> AutomationInstance:
        return self._registry.disable(automation_id)

    def update_automation(self, automation_id: str, **changes: Any) -> AutomationInstance:
        return self._registry.update(automation_id, **changes)

    def get_automation(self, automation_id: str) -> AutomationInstance | None:
        return self._registry.get(automation_id)

    def get_all_automations(self) -> list[AutomationInstance]:
        return self._registry.all()

    # Execution

    async def run_automation(
        self, automation_id: str, trigger: Trigger | None = None
    ) -> AutomationExecutionResult:
        automation = self._registry.require(automation_id)
        if trigger is None:
            if not automation.config.triggers:
                raise ValidationError(f"Automation {automation_id} has no triggers")
            trigger = automation.config.triggers[0]
        return await self._pipeline.execute(automation, trigger)

    def is_automation_running(self, automation_id: str) -> bool:
        return self._pipeline.is_running(automation_id)

    def get_running_automation_ids(self) -> list[str]:
        return self._pipeline.running_ids()

    # History

    def get_history(self, limit: int | None = None) -> list[HistoryEntry]:
        return self._history.recent(limit)

    def get_history_for_automation(
        self, automation_id: str, limit: int | None = None
    ) -> list[HistoryEntry]:
        return self._history.for_automation(automation_id, limit)

    def clear_history(self) -> None:
        self._history.clear()
        self._persist()

    # Internals

    def _activate(self, automation: AutomationInstance) -> None:
        if self._initialized:
            self._scheduler.schedule(automation)

    def _deactivate(self, automation: AutomationInstance) -> None:
        self._scheduler.cancel(automation.id)
        automation.next_run = None

    def _run_on_install(self, automation: AutomationInstance) -> None:
        logger.info(
            "running automation on install",
            extra={"event": "run_on_install", "automation_id": automation.id},
        )
        task = asyncio.create_task(
            self.run_automation(automation.id),
            name=f"install:{automation.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background execution failed",
                exc_info=exc,
                extra={"event": "background_run_error", "source": task.get_name()},
            )

    def _current_state(self) -> EngineState:
        return EngineState(
            automations=self._registry.snapshot(),
            history=self._history.entries(),
        )

    def _persist(self) -> None:
        if self._state_store is None or not self._initialized:
            return
        try:
            self._state_store.save(self._current_state())
        except PersistenceError as exc:
            _log_save_error(exc)

    async def _save_state(self) -> None:
        """Encode on the loop, then write the file from a worker thread."""
        if self._state_store is None or not self._initialized:
            return
        async with self._save_lock:
            try:
                body = self._state_store.encode(self._current_state())
                await asyncio.to_thread(self._state_store.write, body)
            except PersistenceError as exc:
                _log_save_error(exc)


def _log_save_error(exc: PersistenceError) -> None:
    logger.warning(
        "failed to persist engine state",
        extra={"event": "state_save_error", "error": str(exc)},
    )
