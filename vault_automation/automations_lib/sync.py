from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Callable, Iterable

from vault_automation.automations_lib.definitions import (
    DEFINITION_SUFFIX,
    derive_automation_id,
    is_definition_file,
    parse_definition,
)
from vault_automation.automations_lib.errors import AutomationError, ValidationError
from vault_automation.automations_lib.models import ORIGIN_DEFINITION, AutomationInstance
from vault_automation.automations_lib.registry import AutomationRegistry


logger = logging.getLogger(__name__)

_SYNCED_FIELDS = ("name", "description", "config", "source_path", "source_format")


@dataclass
class SyncReport:
    registered: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    invalid: list[str] = field(default_factory=list)


class DefinitionSync:
    """Reconciles ``*.automation.md`` files under the watched directories with the registry."""

    def __init__(
        self,
        *,
        root: str | Path,
        registry: AutomationRegistry,
        on_install: Callable[[AutomationInstance], None] | None = None,
        directories: Iterable[str] = (),
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._registry = registry
        self._on_install = on_install or (lambda _automation: None)
        self._directories: tuple[str, ...] = _normalize_directories(directories)
        self._lock = asyncio.Lock()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def directories(self) -> tuple[str, ...]:
        return self._directories

    async def update_directories(self, directories: Iterable[str]) -> SyncReport:
        self._directories = _normalize_directories(directories)
        logger.info(
            "definition directories updated",
            extra={"event": "definition_dirs_updated", "source": ",".join(self._directories)},
        )
        return await self.scan()

    async def scan(self) -> SyncReport:
        async with self._lock:
            files, unreadable = await asyncio.to_thread(self._read_definition_files)
            report = SyncReport()
            # Files that exist but cannot be read keep their automation.
            seen: set[str] = {derive_automation_id(path) for path in unreadable}
            report.invalid.extend(unreadable)
            for relative_path, text in files:
                seen.add(derive_automation_id(relative_path))
                self._apply_text(relative_path, text, report)

            for automation in self._registry.all():
                if automation.origin != ORIGIN_DEFINITION or automation.id in seen:
                    continue
                self._registry.unregister(automation.id)
                report.removed.append(automation.id)

            logger.info(
                "definition scan finished",
                extra={
                    "event": "definition_scan",
                    "status": "ok",
                    "result_count": len(files),
                    "source": (
                        f"registered={len(report.registered)} updated={len(report.updated)} "
                        f"removed={len(report.removed)} skipped={len(report.skipped)} "
                        f"invalid={len(report.invalid)}"
                    ),
                },
            )
            return report

    async def handle_created(self, path: str | Path) -> SyncReport:
        return await self._handle_upsert(path)

    async def handle_modified(self, path: str | Path) -> SyncReport:
        return await self._handle_upsert(path)

    async def handle_deleted(self, path: str | Path) -> SyncReport:
        report = SyncReport()
        relative_path = self._relative(path)
        if relative_path is None or not is_definition_file(relative_path):
            return report
        async with self._lock:
            automation_id = derive_automation_id(relative_path)
            existing = self._registry.get(automation_id)
            if existing is not None and existing.origin == ORIGIN_DEFINITION:
                self._registry.unregister(automation_id)
                report.removed.append(automation_id)
        return report

    async def handle_moved(self, src_path: str | Path, dest_path: str | Path) -> SyncReport:
        removed = await self.handle_deleted(src_path)
        created = await self.handle_created(dest_path)
        created.removed.extend(removed.removed)
        return created

    async def _handle_upsert(self, path: str | Path) -> SyncReport:
        report = SyncReport()
        relative_path = self._relative(path)
        if relative_path is None or not is_definition_file(relative_path):
            return report
        absolute = self._root / relative_path
        try:
            text = await asyncio.to_thread(absolute.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(
                "failed to read definition file",
                extra={"event": "definition_read_error", "path": relative_path, "error": str(exc)},
            )
            report.invalid.append(relative_path)
            return report
        async with self._lock:
            self._apply_text(relative_path, text, report)
        return report

    def _apply_text(self, relative_path: str, text: str, report: SyncReport) -> None:
        try:
            parsed = parse_definition(text, relative_path)
        except ValidationError as exc:
            logger.warning(
                "invalid automation definition skipped",
                extra={"event": "definition_invalid", "path": relative_path, "error": str(exc)},
            )
            report.invalid.append(relative_path)
            return
        try:
            outcome = self._reconcile(parsed)
        except AutomationError as exc:
            logger.warning(
                "failed to apply automation definition",
                extra={
                    "event": "definition_apply_error",
                    "automation_id": parsed.id,
                    "path": relative_path,
                    "error": str(exc),
                },
            )
            report.invalid.append(relative_path)
            return
        getattr(report, outcome).append(parsed.id)

    def _reconcile(self, parsed: AutomationInstance) -> str:
        existing = self._registry.get(parsed.id)
        if existing is None:
            self._registry.register(parsed)
            if parsed.enabled and parsed.config.run_on_install:
                self._on_install(parsed)
            return "registered"

        if existing.origin != ORIGIN_DEFINITION:
            logger.warning(
                "definition id collides with existing automation, skipping",
                extra={
                    "event": "definition_collision",
                    "automation_id": parsed.id,
                    "source": existing.origin,
                    "path": parsed.source_path,
                },
            )
            return "skipped"

        changes = {
            name: getattr(parsed, name)
            for name in _SYNCED_FIELDS
            if getattr(existing, name) != getattr(parsed, name)
        }
        # The file's flag only wins when it changed since the last sync; otherwise
        # the in-app toggle stands.
        if existing.declared_enabled != parsed.declared_enabled:
            changes["declared_enabled"] = parsed.declared_enabled
            if existing.enabled != parsed.enabled:
                changes["enabled"] = parsed.enabled
        if not changes:
            return "unchanged"
        self._registry.update(parsed.id, **changes)
        return "updated"

    def _read_definition_files(self) -> tuple[list[tuple[str, str]], list[str]]:
        found: dict[str, str] = {}
        unreadable: list[str] = []
        for directory in self._directories:
            base = self._root / directory if directory else self._root
            if not base.is_dir():
                logger.warning(
                    "definition directory missing",
                    extra={"event": "definition_dir_missing", "path": directory or "."},
                )
                continue
            for candidate in sorted(base.rglob(f"*{DEFINITION_SUFFIX}")):
                if not candidate.is_file():
                    continue
                relative_path = candidate.relative_to(self._root).as_posix()
                if relative_path in found or relative_path in unreadable:
                    continue
                try:
                    found[relative_path] = candidate.read_text(encoding="utf-8")
                except (OSError, UnicodeDecodeError) as exc:
                    unreadable.append(relative_path)
                    logger.warning(
                        "failed to read definition file",
                        extra={
                            "event": "definition_read_error",
                            "path": relative_path,
                            "error": str(exc),
                        },
                    )
        return list(found.items()), unreadable

    def _relative(self, path: str | Path) -> str | None:
        """Vault-relative posix path for an absolute, cwd-relative or vault-relative path."""
        candidate = Path(path)
        resolved = candidate.resolve()
        if resolved == self._root or self._root in resolved.parents:
            relative_path = resolved.relative_to(self._root).as_posix()
        elif candidate.is_absolute():
            return None
        else:
            relative_path = candidate.as_posix()
        if not self._in_watched_directory(relative_path):
            return None
        return relative_path

    def _in_watched_directory(self, relative_path: str) -> bool:
        for directory in self._directories:
            if not directory or relative_path.startswith(f"{directory}/"):
                return True
        return False


def _normalize_directories(directories: Iterable[str]) -> tuple[str, ...]:
    normalized: list[str] = []
    for directory in directories:
        value = str(directory).replace("\\", "/").strip().strip("/")
        if value == ".":
            value = ""
        if value not in normalized:
            normalized.append(value)
    return tuple(normalized)
