from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vault_automation.automations_lib.history import AuditLog, ExecutionHistory
from vault_automation.automations_lib.models import (
    ActionExecutionResult,
    AutomationConfig,
    AutomationExecutionResult,
    AutomationInstance,
    HistoryEntry,
    RunShellAction,
    ScheduleTrigger,
)


BASE_TIME = datetime(2024, 5, 10, 9, 0, tzinfo=timezone.utc)


def make_result(success: bool = True, *, offset: int = 0, error: str | None = None) -> AutomationExecutionResult:
    action = RunShellAction("backup --all")
    return AutomationExecutionResult(
        success=success,
        timestamp=BASE_TIME + timedelta(seconds=offset),
        trigger=ScheduleTrigger("0 9 * * *"),
        action_results=(
            ActionExecutionResult(
                action=action,
                success=success,
                result={"stdout": "token=abc123 copied", "api_key": "xyz"} if success else None,
                error=error,
                duration_ms=42,
            ),
        ),
        error=error,
    )


def make_entry(automation_id: str, offset: int) -> HistoryEntry:
    result = make_result(offset=offset)
    return HistoryEntry(automation_id, result, result.timestamp)


def make_automation() -> AutomationInstance:
    return AutomationInstance(
        id="backup",
        name="Nightly backup",
        config=AutomationConfig(
            triggers=(ScheduleTrigger("0 9 * * *"),),
            actions=(RunShellAction("backup --all"),),
        ),
        enabled=True,
    )


def test_history_evicts_oldest_entries_beyond_capacity() -> None:
    history = ExecutionHistory(100)

    for offset in range(101):
        history.push(make_entry("backup", offset))

    assert len(history) == 100
    assert history.entries()[0].timestamp == BASE_TIME + timedelta(seconds=1)
    assert history.recent(1)[0].timestamp == BASE_TIME + timedelta(seconds=100)


def test_recent_and_per_automation_queries_are_newest_first() -> None:
    history = ExecutionHistory(10)
    history.load([make_entry("a", 0), make_entry("b", 1), make_entry("a", 2)])

    assert [item.automation_id for item in history.recent()] == ["a", "b", "a"]
    assert [item.timestamp for item in history.for_automation("a")] == [
        BASE_TIME + timedelta(seconds=2),
        BASE_TIME,
    ]
    assert len(history.for_automation("a", limit=1)) == 1

    history.clear()
    assert history.recent() == []


def test_history_capacity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ExecutionHistory(0)


def test_audit_entry_is_markdown_and_redacted(tmp_path: Path) -> None:
    log = AuditLog(tmp_path / "audit" / "log.md")

    assert log.append(make_automation(), make_result(), 57) is True
    assert log.append(make_automation(), make_result(False, error="exit 1 password=hunter2"), 3) is True

    text = log.path.read_text(encoding="utf-8")
    assert "## ✅ Nightly backup (2024-05-10T09:00:00+00:00)" in text
    assert "- **Automation:** `backup`" in text
    assert "- **Trigger:** schedule `0 9 * * *`" in text
    assert "- **Duration:** 57 ms" in text
    assert "### Action 1: run-shell `backup --all` (ok, 42 ms)" in text
    assert "abc123" not in text
    assert "xyz" not in text
    assert "## ❌ Nightly backup" in text
    assert "- **Status:** failed" in text
    assert "- **Error:** exit 1 password=<redacted>" in text
    assert text.count("---\n") == 2


def test_audit_output_is_truncated(tmp_path: Path) -> None:
    log = AuditLog(tmp_path / "log.md", output_limit=20)
    result = make_result(False, error="x" * 200)

    section = log.format_entry(make_automation(), result, 1)

    assert "> " + "x" * 19 + "…" in section


def test_audit_write_failure_is_reported_not_raised(tmp_path: Path) -> None:
    target = tmp_path / "log.md"
    target.mkdir()

    assert AuditLog(target).append(make_automation(), make_result(), 1) is False


@pytest.mark.asyncio
async def test_audit_record_writes_from_a_worker_thread(tmp_path: Path) -> None:
    log = AuditLog(tmp_path / "log.md")

    assert await log.record(make_automation(), make_result(), 5) is True
    assert await log.record(make_automation(), make_result(), 6) is True

    text = log.path.read_text(encoding="utf-8")
    assert text.index("- **Duration:** 5 ms") < text.index("- **Duration:** 6 ms")

    blocked = tmp_path / "blocked.md"
    blocked.mkdir()
    assert await AuditLog(blocked).record(make_automation(), make_result(), 1) is False
