from __future__ import annotations

import asyncio
from collections import deque
import logging
from pathlib import Path
from typing import Iterable

from vault_automation.automations_lib.models import (
    AutomationExecutionResult,
    AutomationInstance,
    HistoryEntry,
    describe_action,
    describe_trigger,
)
from vault_automation.message_utils import quote_block, render_value, truncate
from vault_automation.redaction import redact_payload, redact_text


logger = logging.getLogger(__name__)

DEFAULT_HISTORY_CAPACITY = 100


class ExecutionHistory:
    """Bounded ring of execution results, oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self._entries: deque[HistoryEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def __len__(self) -> int:
        return len(self._entries)

    def push(self, entry: HistoryEntry) -> None:
        self._entries.append(entry)

    def load(self, entries: Iterable[HistoryEntry]) -> None:
        self._entries.clear()
        self._entries.extend(entries)

    def entries(self) -> list[HistoryEntry]:
        """Oldest first, the order they are persisted in."""
        return list(self._entries)

    def recent(self, limit: int | None = None) -> list[HistoryEntry]:
        newest_first = list(reversed(self._entries))
        return newest_first[:limit] if limit else newest_first

    def for_automation(self, automation_id: str, limit: int | None = None) -> list[HistoryEntry]:
        matches = [item for item in reversed(self._entries) if item.automation_id == automation_id]
        return matches[:limit] if limit else matches

    def clear(self) -> None:
        self._entries.clear()


class AuditLog:
    """Append-only markdown record of every execution."""

    def __init__(self, path: str | Path, output_limit: int = 500) -> None:
        self._path = Path(path)
        self._output_limit = output_limit

    @property
    def path(self) -> Path:
        return self._path

    def append(
        self,
        automation: AutomationInstance,
        result: AutomationExecutionResult,
        duration_ms: int,
    ) -> bool:
        return self._write(automation.id, self.format_entry(automation, result, duration_ms))

    async def record(
        self,
        automation: AutomationInstance,
        result: AutomationExecutionResult,
        duration_ms: int,
    ) -> bool:
        """Format on the loop, append from a worker thread."""
        section = self.format_entry(automation, result, duration_ms)
        return await asyncio.to_thread(self._write, automation.id, section)

    def _write(self, automation_id: str, section: str) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(section)
        except Exception as exc:
            logger.warning(
                "failed to append audit log entry",
                extra={
                    "event": "audit_log_error",
                    "automation_id": automation_id,
                    "path": str(self._path),
                    "error": str(exc),
                },
            )
            return False
        return True

    def format_entry(
        self,
        automation: AutomationInstance,
        result: AutomationExecutionResult,
        duration_ms: int,
    ) -> str:
        status = "success" if result.success else "failed"
        marker = "✅" if result.success else "❌"
        lines = [
            f"## {marker} {automation.name} ({result.timestamp.isoformat()})",
            "",
            f"- **Automation:** `{automation.id}`",
            f"- **Status:** {status}",
            f"- **Trigger:** {describe_trigger(result.trigger)}",
            f"- **Duration:** {duration_ms} ms",
        ]
        if result.error:
            lines.append(f"- **Error:** {redact_text(result.error)}")
        lines.append("")
        for index, item in enumerate(result.action_results, start=1):
            outcome = "ok" if item.success else "failed"
            lines.append(
                f"### Action {index}: {describe_action(item.action)} "
                f"({outcome}, {item.duration_ms} ms)"
            )
            lines.append("")
            if item.success:
                body = render_value(redact_payload(item.result))
            else:
                body = redact_text(item.error or "")
            if body:
                lines.append(quote_block(truncate(body, self._output_limit)))
                lines.append("")
        lines.append("---")
        lines.append("")
        return "\n".join(lines) + "\n"
