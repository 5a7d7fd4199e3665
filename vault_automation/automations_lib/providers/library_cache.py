from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from vault_automation.automations_lib.base import (
    AgentDefinition,
    PromptDefinition,
    SkillDefinition,
)
from vault_automation.automations_lib.definitions import split_front_matter
from vault_automation.automations_lib.errors import ValidationError


logger = logging.getLogger(__name__)


class MarkdownLibrary:
    """Agents, prompts and skills stored as ``<id>.<kind>.md`` files.

    The front matter may carry ``name`` and ``description``; the body holds the
    instructions (or the prompt content).
    """

    def __init__(
        self,
        *,
        agents_dir: str | Path | None = None,
        prompts_dir: str | Path | None = None,
        skills_dir: str | Path | None = None,
    ) -> None:
        self._agents_dir = Path(agents_dir) if agents_dir else None
        self._prompts_dir = Path(prompts_dir) if prompts_dir else None
        self._skills_dir = Path(skills_dir) if skills_dir else None

    async def get_full_agent(self, agent_id: str) -> AgentDefinition | None:
        loaded = await self._load(self._agents_dir, agent_id, "agent")
        if loaded is None:
            return None
        metadata, body = loaded
        return AgentDefinition(
            id=agent_id,
            name=str(metadata.get("name") or agent_id),
            description=str(metadata.get("description") or ""),
            instructions=body,
        )

    async def get_full_prompt(self, prompt_id: str) -> PromptDefinition | None:
        loaded = await self._load(self._prompts_dir, prompt_id, "prompt")
        if loaded is None:
            return None
        metadata, body = loaded
        return PromptDefinition(
            id=prompt_id,
            name=str(metadata.get("name") or prompt_id),
            content=body,
        )

    async def get_full_skill(self, skill_id: str) -> SkillDefinition | None:
        loaded = await self._load(self._skills_dir, skill_id, "skill")
        if loaded is None:
            return None
        metadata, body = loaded
        return SkillDefinition(
            id=skill_id,
            name=str(metadata.get("name") or skill_id),
            instructions=body,
        )

    async def _load(
        self, directory: Path | None, item_id: str, kind: str
    ) -> tuple[dict, str] | None:
        if directory is None or not item_id or "/" in item_id or "\\" in item_id:
            return None
        path = directory / f"{item_id}.{kind}.md"
        if not path.is_file():
            return None
        text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        try:
            metadata, body = split_front_matter(text)
        except ValidationError as exc:
            logger.warning(
                "library file has invalid front matter",
                extra={"event": "library_parse_error", "path": str(path), "error": str(exc)},
            )
            metadata, body = {}, text
        return metadata, body.strip()
