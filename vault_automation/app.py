from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from zoneinfo import ZoneInfo

from vault_automation.automations_lib.base import Collaborators, Notifier
from vault_automation.automations_lib.engine import AutomationEngine
from vault_automation.automations_lib.events import VaultEventHub
from vault_automation.automations_lib.history import AuditLog
from vault_automation.automations_lib.providers import (
    HttpChatProvider,
    InMemorySkillRegistry,
    MarkdownLibrary,
    ShellRunner,
)
from vault_automation.config import Settings
from vault_automation.notifier import LoggingNotifier, TelegramNotifier
from vault_automation.state_store import EngineStateStore
from vault_automation.vault import FileSystemVault, seed_tag_cache


logger = logging.getLogger(__name__)


@dataclass
class Application:
    settings: Settings
    engine: AutomationEngine
    vault: FileSystemVault
    hub: VaultEventHub
    skills: InMemorySkillRegistry

    async def start(self) -> None:
        seed_tag_cache(self.engine.router.tag_cache, await self.vault.prime_tags())
        await self.engine.initialize(self.settings.automation_directories)
        if self.settings.watch_vault:
            self.vault.start_watching()
        self.vault.open()

    async def stop(self) -> None:
        self.vault.stop_watching()
        await self.engine.shutdown()


def _vault_path(root: Path, value: str | None) -> Path | None:
    if not value:
        return None
    path = Path(value)
    return path if path.is_absolute() else root / path


def build_notifier(settings: Settings) -> Notifier:
    if settings.telegram_bot_token and settings.telegram_notify_chat_id is not None:
        return TelegramNotifier(settings.telegram_bot_token, settings.telegram_notify_chat_id)
    return LoggingNotifier()


def build_engine(settings: Settings) -> Application:
    root = Path(settings.vault_root).expanduser().resolve()
    state_path = _vault_path(root, settings.state_path)
    audit_path = _vault_path(root, settings.audit_log_path)
    hub = VaultEventHub()
    vault = FileSystemVault(root, hub, ignored=(state_path, audit_path))
    skills = InMemorySkillRegistry()
    library = MarkdownLibrary(
        agents_dir=_vault_path(root, settings.agents_directory),
        prompts_dir=_vault_path(root, settings.prompts_directory),
        skills_dir=_vault_path(root, settings.skills_directory),
    )
    collaborators = Collaborators(
        content_store=vault,
        agents=library,
        prompts=library,
        skills=library,
        skill_registry=skills,
        ai_provider=HttpChatProvider(
            settings.ai_provider_url,
            settings.ai_provider_model,
            api_key=settings.ai_provider_api_key,
            timeout_seconds=settings.request_timeout_seconds,
        ),
        shell=ShellRunner(cwd=root, timeout_seconds=settings.shell_timeout_seconds),
    )
    engine = AutomationEngine(
        collaborators=collaborators,
        vault_root=root,
        state_store=EngineStateStore(state_path),
        audit_log=AuditLog(audit_path),
        notifier=build_notifier(settings),
        hub=hub,
        tz=ZoneInfo(settings.timezone),
        history_limit=settings.history_limit,
        watch_definitions=settings.watch_vault,
    )
    logger.info(
        "automation engine built",
        extra={"event": "engine_built", "path": str(root)},
    )
    return Application(settings=settings, engine=engine, vault=vault, hub=hub, skills=skills)
