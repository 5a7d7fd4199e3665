from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Callable, Coroutine, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from vault_automation.automations_lib.definitions import is_definition_file
from vault_automation.automations_lib.sync import DefinitionSync


logger = logging.getLogger(__name__)

FORWARDED_EVENTS = frozenset({"created", "modified", "deleted", "moved"})

EventCallback = Callable[[str, str, Optional[str]], None]


class _LoopForwardingHandler(FileSystemEventHandler):
    def __init__(self, watcher: DirectoryWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in FORWARDED_EVENTS:
            return
        src = os.fsdecode(event.src_path)
        dest_raw = getattr(event, "dest_path", "")
        dest = os.fsdecode(dest_raw) if dest_raw else None
        self._watcher.forward(event.event_type, src, dest)


class DirectoryWatcher:
    """Recursive watchdog observer whose events are delivered on the event loop thread."""

    def __init__(
        self,
        path: str | Path,
        callback: EventCallback,
        *,
        path_filter: Callable[[str], bool] | None = None,
    ) -> None:
        self._path = Path(path)
        self._callback = callback
        self._path_filter = path_filter
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Any = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(_LoopForwardingHandler(self), str(self._path), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(
            "directory watcher started",
            extra={"event": "watcher_started", "path": str(self._path)},
        )

    def stop(self) -> None:
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        observer.join(timeout=5)
        logger.info(
            "directory watcher stopped",
            extra={"event": "watcher_stopped", "path": str(self._path)},
        )

    def forward(self, kind: str, src: str, dest: str | None = None) -> None:
        """Called from the observer thread."""
        if self._path_filter is not None:
            if not self._path_filter(src) and not (dest and self._path_filter(dest)):
                return
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._callback, kind, src, dest)
        except RuntimeError:
            # Loop shut down between the check and the call.
            return


class DefinitionWatcher:
    """Mirrors definition file changes into :class:`DefinitionSync` incrementally."""

    def __init__(self, sync: DefinitionSync) -> None:
        self._sync = sync
        self._tasks: set[asyncio.Task] = set()
        self._watcher = DirectoryWatcher(
            sync.root,
            self.dispatch,
            path_filter=is_definition_file,
        )

    @property
    def running(self) -> bool:
        return self._watcher.running

    def start(self) -> None:
        self._watcher.start()

    def stop(self) -> None:
        self._watcher.stop()

    def dispatch(self, kind: str, src: str, dest: str | None = None) -> None:
        if kind == "created":
            self._spawn(self._sync.handle_created(src))
        elif kind == "modified":
            self._spawn(self._sync.handle_modified(src))
        elif kind == "deleted":
            self._spawn(self._sync.handle_deleted(src))
        elif kind == "moved" and dest:
            self._spawn(self._sync.handle_moved(src, dest))

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "definition sync from watcher failed",
                exc_info=exc,
                extra={"event": "definition_watch_error"},
            )
