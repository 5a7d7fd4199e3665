from __future__ import annotations

from dataclasses import dataclass
import inspect
import logging
from typing import Any, Callable


logger = logging.getLogger(__name__)

SkillHandler = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class RuntimeSkill:
    id: str
    name: str
    handler: SkillHandler
    description: str = ""


class InMemorySkillRegistry:
    """Skills registered at runtime with a direct handler; sync or async."""

    def __init__(self) -> None:
        self._skills: dict[str, RuntimeSkill] = {}

    def register(
        self,
        skill_id: str,
        handler: SkillHandler,
        *,
        name: str | None = None,
        description: str = "",
    ) -> RuntimeSkill:
        if not skill_id:
            raise ValueError("Skill id is required")
        skill = RuntimeSkill(
            id=skill_id,
            name=name or skill_id,
            handler=handler,
            description=description,
        )
        self._skills[skill_id] = skill
        return skill

    def unregister(self, skill_id: str) -> None:
        self._skills.pop(skill_id, None)

    def get_skill(self, skill_id: str) -> RuntimeSkill | None:
        return self._skills.get(skill_id)

    def list_skills(self) -> list[RuntimeSkill]:
        return list(self._skills.values())

    async def execute_skill(self, skill_id: str, payload: dict[str, Any]) -> Any:
        skill = self._skills.get(skill_id)
        if skill is None:
            raise LookupError(f"Skill '{skill_id}' is not registered")
        logger.info("executing runtime skill", extra={"event": "skill_run", "source": skill_id})
        result = skill.handler(dict(payload))
        if inspect.isawaitable(result):
            result = await result
        return result
