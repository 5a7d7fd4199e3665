from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
import threading

from vault_automation.automations_lib.errors import PersistenceError
from vault_automation.automations_lib.models import EngineState


logger = logging.getLogger(__name__)


class EngineStateStore:
    """Whole-file JSON persistence for registered automations and history."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> EngineState:
        with self._lock:
            if not self._path.exists():
                return EngineState()
            try:
                raw = self._path.read_text(encoding="utf-8")
                payload = json.loads(raw) if raw.strip() else {}
                if not isinstance(payload, dict):
                    raise ValueError("state root must be an object")
                return EngineState.from_dict(payload)
            except Exception as exc:
                logger.warning(
                    "failed to load engine state, starting empty",
                    extra={
                        "event": "state_load_error",
                        "path": str(self._path),
                        "error": str(exc),
                    },
                )
                return EngineState()

    def save(self, state: EngineState) -> None:
        self.write(self.encode(state))

    def encode(self, state: EngineState) -> str:
        try:
            return json.dumps(state.to_dict(), ensure_ascii=False, indent=2)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Engine state is not serializable: {exc}") from exc

    def write(self, body: str) -> None:
        """Atomically replace the state file with an encoded body."""
        with self._lock:
            tmp_name: str | None = None
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self._path.name}.",
                    suffix=".tmp",
                    dir=str(self._path.parent),
                )
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(body)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self._path)
                tmp_name = None
            except OSError as exc:
                raise PersistenceError(
                    f"Failed to save engine state to {self._path}: {exc}"
                ) from exc
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        pass
