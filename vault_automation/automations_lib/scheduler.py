from __future__ import annotations

import asyncio
from datetime import datetime, timezone, tzinfo
import logging
from typing import Any, Awaitable, Callable

from croniter import croniter

from vault_automation.automations_lib.errors import SchedulingError
from vault_automation.automations_lib.models import (
    AutomationInstance,
    ScheduleTrigger,
    Trigger,
)
from vault_automation.automations_lib.registry import AutomationRegistry


logger = logging.getLogger(__name__)

Runner = Callable[[AutomationInstance, Trigger], Awaitable[Any]]


def next_occurrence(expression: str, now: datetime) -> datetime:
    """Return the first occurrence of ``expression`` strictly after ``now``.

    Five-field expressions are standard cron. Six-field expressions carry a
    leading seconds field.
    """
    parts = (expression or "").split()
    if len(parts) not in (5, 6):
        raise SchedulingError(
            f"Invalid cron expression '{expression}': expected 5 or 6 fields"
        )
    try:
        iterator = croniter(
            " ".join(parts),
            now,
            second_at_beginning=len(parts) == 6,
        )
        candidate = iterator.get_next(datetime)
        while candidate <= now:
            candidate = iterator.get_next(datetime)
    except Exception as exc:
        raise SchedulingError(f"Invalid cron expression '{expression}': {exc}") from exc
    return candidate


class TriggerScheduler:
    """One pending timer per automation, re-armed from wall-clock time after each fire."""

    def __init__(
        self,
        *,
        registry: AutomationRegistry,
        runner: Runner,
        tz: tzinfo = timezone.utc,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._registry = registry
        self._runner = runner
        self._tz = tz
        self._now_fn = now_fn or (lambda: datetime.now(self._tz))
        self._handles: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    def schedule(self, automation: AutomationInstance) -> datetime | None:
        self.cancel(automation.id)
        now = self._now_fn()
        selected: tuple[datetime, ScheduleTrigger] | None = None
        for trigger in automation.config.triggers:
            if not isinstance(trigger, ScheduleTrigger):
                continue
            try:
                candidate = next_occurrence(trigger.schedule, now)
            except SchedulingError as exc:
                logger.error(
                    "failed to schedule automation",
                    extra={
                        "event": "schedule_error",
                        "automation_id": automation.id,
                        "trigger": trigger.schedule,
                        "status": "error",
                        "error": str(exc),
                    },
                )
                continue
            if selected is None or candidate < selected[0]:
                selected = (candidate, trigger)

        if selected is None:
            automation.next_run = None
            return None

        fire_at, trigger = selected
        automation.next_run = fire_at.astimezone(timezone.utc)
        delay_seconds = max(0.0, (fire_at - now).total_seconds())
        loop = asyncio.get_running_loop()
        self._handles[automation.id] = loop.call_later(
            delay_seconds, self._fire, automation.id, trigger
        )
        logger.info(
            "automation scheduled",
            extra={
                "event": "schedule_armed",
                "automation_id": automation.id,
                "trigger": trigger.schedule,
                "next_run": automation.next_run.isoformat(),
            },
        )
        return automation.next_run

    def cancel(self, automation_id: str) -> None:
        handle = self._handles.pop(automation_id, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def close(self) -> None:
        self._closed = True
        self.cancel_all()

    def reopen(self) -> None:
        self._closed = False

    def is_scheduled(self, automation_id: str) -> bool:
        return automation_id in self._handles

    def pending_ids(self) -> list[str]:
        return list(self._handles)

    def _fire(self, automation_id: str, trigger: ScheduleTrigger) -> None:
        self._handles.pop(automation_id, None)
        if self._closed:
            return
        task = asyncio.create_task(
            self._run_and_rearm(automation_id, trigger),
            name=f"schedule:{automation_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_and_rearm(self, automation_id: str, trigger: ScheduleTrigger) -> None:
        automation = self._registry.get(automation_id)
        if automation is None or not automation.enabled:
            return
        try:
            await self._runner(automation, trigger)
        except Exception:
            logger.exception(
                "scheduled execution failed",
                extra={"event": "schedule_run_error", "automation_id": automation_id},
            )
        current = self._registry.get(automation_id)
        if (
            self._closed
            or current is None
            or not current.enabled
            or automation_id in self._handles
        ):
            return
        self.schedule(current)
