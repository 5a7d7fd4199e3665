from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from time import perf_counter
from typing import Any

from vault_automation.automations_lib.base import ShellResult
from vault_automation.automations_lib.errors import ActionExecutionError


logger = logging.getLogger(__name__)


class ShellRunner:
    """Runs ``run-shell`` commands through the system shell.

    The action input is written to stdin as JSON. Commands that outlive
    ``timeout_seconds`` are killed and reported as failures.
    """

    def __init__(self, cwd: str | Path | None = None, timeout_seconds: int = 30) -> None:
        self._cwd = str(cwd) if cwd is not None else None
        self._timeout_seconds = max(1, timeout_seconds)

    async def run(self, command: str, payload: dict[str, Any] | None = None) -> ShellResult:
        stdin_bytes = json.dumps(payload or {}, ensure_ascii=False, default=str).encode()
        start = perf_counter()
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
            )
        except OSError as exc:
            raise ActionExecutionError(f"Failed to start command: {exc}") from exc

        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(
                process.communicate(input=stdin_bytes),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            await self._kill(process)
            logger.warning(
                "shell command timed out",
                extra={
                    "event": "shell_timeout",
                    "status": "timeout",
                    "duration_ms": int((perf_counter() - start) * 1000),
                },
            )
            raise ActionExecutionError(
                f"Command timed out after {self._timeout_seconds}s"
            ) from exc

        result = ShellResult(
            command=command,
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=(stdout_raw or b"").decode(errors="replace").strip(),
            stderr=(stderr_raw or b"").decode(errors="replace").strip(),
        )
        logger.info(
            "shell command finished",
            extra={
                "event": "shell_done",
                "status": "ok" if result.exit_code == 0 else "error",
                "duration_ms": int((perf_counter() - start) * 1000),
            },
        )
        return result

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning("killed shell command did not exit", extra={"event": "shell_kill_stuck"})
