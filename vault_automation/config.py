from __future__ import annotations

from dataclasses import dataclass, field
import json
import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    vault_root: str
    automation_directories: tuple[str, ...] = field(default_factory=tuple)
    state_path: str = ".vault-automation/state.json"
    audit_log_path: str = ".vault-automation/audit-log.md"
    history_limit: int = 100
    timezone: str = "UTC"
    shell_timeout_seconds: int = 30
    request_timeout_seconds: int = 60
    log_level: str = "INFO"
    ai_provider_url: str | None = None
    ai_provider_model: str | None = None
    ai_provider_api_key: str | None = None
    agents_directory: str | None = None
    prompts_directory: str | None = None
    skills_directory: str | None = None
    telegram_bot_token: str | None = None
    telegram_notify_chat_id: int | None = None
    watch_vault: bool = True


def _read_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default)).strip()
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: expected an integer, got {raw!r}.") from exc


def _read_positive_int(name: str, default: int) -> int:
    value = _read_int(name, default)
    if value <= 0:
        raise ValueError(f"Invalid {name}: must be greater than zero.")
    return value


def _read_optional_str(name: str) -> str | None:
    raw = os.getenv(name, "").strip()
    return raw or None


def _read_optional_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: expected an integer, got {raw!r}.") from exc


def _read_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, str(default)).strip().lower()
    if raw in {"1", "true", "yes", "y", "on"}:
        return True
    if raw in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _read_list(name: str) -> tuple[str, ...]:
    """Accept either a JSON list or a comma separated string."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    if raw.startswith("["):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid {name}: expected a JSON list of strings.") from exc
        if not isinstance(payload, list):
            raise ValueError(f"Invalid {name}: expected a JSON list.")
        items = [str(item).strip() for item in payload]
    else:
        items = [part.strip() for part in raw.split(",")]
    return tuple(item.strip("/") for item in items if item)


def _read_timezone(name: str, default: str) -> str:
    raw = os.getenv(name, default).strip() or default
    try:
        ZoneInfo(raw)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Invalid {name}: unknown timezone {raw!r}.") from exc
    return raw


def load_settings() -> Settings:
    # Ensure local .env values win over stale shell/system environment values.
    load_dotenv(override=True)

    vault_root = os.getenv("VAULT_ROOT", "").strip()
    if not vault_root:
        raise ValueError("Missing VAULT_ROOT in environment.")

    return Settings(
        vault_root=vault_root,
        automation_directories=_read_list("AUTOMATION_DIRECTORIES"),
        state_path=os.getenv("AUTOMATION_STATE_PATH", "").strip()
        or ".vault-automation/state.json",
        audit_log_path=os.getenv("AUTOMATION_AUDIT_LOG_PATH", "").strip()
        or ".vault-automation/audit-log.md",
        history_limit=_read_positive_int("AUTOMATION_HISTORY_LIMIT", 100),
        timezone=_read_timezone("AUTOMATION_TIMEZONE", "UTC"),
        shell_timeout_seconds=_read_positive_int("SHELL_TIMEOUT_SECONDS", 30),
        request_timeout_seconds=_read_positive_int("REQUEST_TIMEOUT_SECONDS", 60),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO",
        ai_provider_url=_read_optional_str("AI_PROVIDER_URL"),
        ai_provider_model=_read_optional_str("AI_PROVIDER_MODEL"),
        ai_provider_api_key=_read_optional_str("AI_PROVIDER_API_KEY"),
        agents_directory=_read_optional_str("AGENTS_DIRECTORY"),
        prompts_directory=_read_optional_str("PROMPTS_DIRECTORY"),
        skills_directory=_read_optional_str("SKILLS_DIRECTORY"),
        telegram_bot_token=_read_optional_str("TELEGRAM_BOT_TOKEN"),
        telegram_notify_chat_id=_read_optional_int("TELEGRAM_NOTIFY_CHAT_ID"),
        watch_vault=_read_bool("WATCH_VAULT", True),
    )
