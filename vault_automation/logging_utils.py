from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import sys
from typing import Any

from vault_automation.redaction import redact_text


_EXTRA_FIELDS = (
    "event",
    "automation_id",
    "trigger",
    "action",
    "source",
    "status",
    "error",
    "duration_ms",
    "next_run",
    "path",
    "result_count",
)


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
            record.msg = redact_text(message)
            record.args = ()
        except Exception:
            # Best-effort: never fail logging due to redaction.
            return True
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field_name in _EXTRA_FIELDS:
            value = getattr(record, field_name, None)
            if value is None:
                continue
            if isinstance(value, str):
                value = redact_text(value)
            payload[field_name] = value
        if record.exc_info:
            payload["exception"] = redact_text(self.formatException(record.exc_info))
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RedactingFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    # watchdog and httpx are chatty at INFO.
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
