from __future__ import annotations

import asyncio
from collections import defaultdict
import logging
from typing import Any, Awaitable, Callable, Iterable

from vault_automation.automations_lib.glob_matcher import matches_pattern
from vault_automation.automations_lib.models import (
    FILE_TRIGGER_TYPES,
    AutomationInstance,
    FileTrigger,
    StartupTrigger,
    TagAddedTrigger,
    Trigger,
    VaultOpenedTrigger,
)
from vault_automation.automations_lib.registry import AutomationRegistry


logger = logging.getLogger(__name__)

EVENT_CREATE = "create"
EVENT_MODIFY = "modify"
EVENT_DELETE = "delete"
EVENT_RENAME = "rename"
EVENT_TAGS_CHANGED = "changed"
EVENT_VAULT_OPENED = "vault-opened"

_FILE_EVENT_TRIGGERS = {
    EVENT_CREATE: "file-created",
    EVENT_MODIFY: "file-modified",
    EVENT_DELETE: "file-deleted",
}

Dispatcher = Callable[[AutomationInstance, Trigger, dict], Awaitable[Any]]


class VaultEventHub:
    """In-process emitter through which the content store reports vault events."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Callable[..., Any]]] = defaultdict(list)

    def on(self, event: str, handler: Callable[..., Any]) -> Callable[[], None]:
        self._handlers[event].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: str, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(*args)
            except Exception:
                logger.exception(
                    "vault event handler failed",
                    extra={"event": "vault_event_handler_error", "source": event},
                )

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").lower()


class TagCache:
    """Last observed tag set per path; the single owner of tag-diff state."""

    def __init__(self) -> None:
        self._tags: dict[str, frozenset[str]] = {}

    def diff(self, path: str, tags: Iterable[str]) -> set[str]:
        current = frozenset(normalize_tag(tag) for tag in tags if normalize_tag(tag))
        previous = self._tags.get(path, frozenset())
        self._tags[path] = current
        return set(current - previous)

    def get(self, path: str) -> frozenset[str]:
        return self._tags.get(path, frozenset())

    def forget(self, path: str) -> None:
        self._tags.pop(path, None)

    def rename(self, old_path: str, new_path: str) -> None:
        tags = self._tags.pop(old_path, None)
        if tags is not None:
            self._tags[new_path] = tags

    def clear(self) -> None:
        self._tags.clear()


class EventRouter:
    def __init__(
        self,
        *,
        registry: AutomationRegistry,
        dispatch: Dispatcher,
        tag_cache: TagCache | None = None,
    ) -> None:
        self._registry = registry
        self._dispatch = dispatch
        self._tag_cache = tag_cache or TagCache()
        self._unsubscribers: list[Callable[[], None]] = []
        self._tasks: set[asyncio.Task] = set()
        self._vault_opened_fired = False
        self._startup_fired = False

    @property
    def tag_cache(self) -> TagCache:
        return self._tag_cache

    @property
    def attached(self) -> bool:
        return bool(self._unsubscribers)

    def attach(self, hub: VaultEventHub) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            hub.on(EVENT_CREATE, lambda path: self.handle_file_event(EVENT_CREATE, path)),
            hub.on(EVENT_MODIFY, lambda path: self.handle_file_event(EVENT_MODIFY, path)),
            hub.on(EVENT_DELETE, self._on_delete),
            hub.on(EVENT_RENAME, self._tag_cache.rename),
            hub.on(EVENT_TAGS_CHANGED, self.handle_tags_changed),
            hub.on(EVENT_VAULT_OPENED, self.handle_vault_opened),
        ]

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def handle_file_event(self, event: str, path: str) -> int:
        trigger_type = _FILE_EVENT_TRIGGERS.get(event)
        if trigger_type is None:
            return 0
        fired = 0
        for automation in self._registry.enabled():
            for trigger in automation.config.triggers:
                if not isinstance(trigger, FileTrigger) or trigger.type != trigger_type:
                    continue
                if not matches_pattern(path, trigger.pattern):
                    continue
                logger.info(
                    "file event matched automation",
                    extra={
                        "event": "file_trigger_matched",
                        "automation_id": automation.id,
                        "trigger": trigger_type,
                        "source": path,
                    },
                )
                self._spawn(automation, trigger, {"file_path": path})
                fired += 1
        return fired

    def handle_tags_changed(self, path: str, tags: Iterable[str]) -> int:
        added = self._tag_cache.diff(path, tags)
        if not added:
            return 0
        fired = 0
        for automation in self._registry.enabled():
            for trigger in automation.config.triggers:
                if not isinstance(trigger, TagAddedTrigger):
                    continue
                tag = normalize_tag(trigger.tag)
                if tag not in added:
                    continue
                logger.info(
                    "tag added matched automation",
                    extra={
                        "event": "tag_trigger_matched",
                        "automation_id": automation.id,
                        "trigger": tag,
                        "source": path,
                    },
                )
                self._spawn(automation, trigger, {"file_path": path, "tag": tag})
                fired += 1
        return fired

    def handle_vault_opened(self) -> int:
        if self._vault_opened_fired:
            return 0
        self._vault_opened_fired = True
        return self._fire_lifecycle(VaultOpenedTrigger)

    def fire_startup(self) -> int:
        if self._startup_fired:
            return 0
        self._startup_fired = True
        return self._fire_lifecycle(StartupTrigger)

    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_delete(self, path: str) -> None:
        self.handle_file_event(EVENT_DELETE, path)
        self._tag_cache.forget(path)

    def _fire_lifecycle(self, trigger_cls: type) -> int:
        fired = 0
        for automation in self._registry.enabled():
            for trigger in automation.config.triggers:
                if isinstance(trigger, trigger_cls):
                    logger.info(
                        "lifecycle trigger fired",
                        extra={
                            "event": "lifecycle_trigger_fired",
                            "automation_id": automation.id,
                            "trigger": trigger.type,
                        },
                    )
                    self._spawn(automation, trigger, {})
                    fired += 1
        return fired

    def _spawn(self, automation: AutomationInstance, trigger: Trigger, data: dict) -> None:
        task = asyncio.create_task(
            self._dispatch(automation, trigger, data),
            name=f"trigger:{automation.id}:{trigger.type}",
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
                "triggered execution failed",
                exc_info=exc,
                extra={"event": "trigger_run_error", "source": task.get_name()},
            )


__all__ = [
    "EVENT_CREATE",
    "EVENT_DELETE",
    "EVENT_MODIFY",
    "EVENT_RENAME",
    "EVENT_TAGS_CHANGED",
    "EVENT_VAULT_OPENED",
    "EventRouter",
    "TagCache",
    "VaultEventHub",
    "FILE_TRIGGER_TYPES",
    "normalize_tag",
]
