from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class AgentDefinition:
    id: str
    name: str
    description: str
    instructions: str


@dataclass(frozen=True)
class PromptDefinition:
    id: str
    name: str
    content: str


@dataclass(frozen=True)
class SkillDefinition:
    id: str
    name: str
    instructions: str


@dataclass(frozen=True)
class ShellResult:
    command: str
    exit_code: int
    stdout: str
    stderr: str


class AgentCache(Protocol):
    async def get_full_agent(self, agent_id: str) -> AgentDefinition | None:
        """Return the complete agent definition or None when unknown."""


class PromptCache(Protocol):
    async def get_full_prompt(self, prompt_id: str) -> PromptDefinition | None:
        """Return the complete prompt definition or None when unknown."""


class SkillCache(Protocol):
    async def get_full_skill(self, skill_id: str) -> SkillDefinition | None:
        """Return the complete file-backed skill or None when unknown."""


class SkillRegistry(Protocol):
    def get_skill(self, skill_id: str) -> Any | None:
        """Return the runtime skill registered under ``skill_id``."""

    async def execute_skill(self, skill_id: str, payload: dict[str, Any]) -> Any:
        """Invoke the runtime skill handler."""


class AIProvider(Protocol):
    def is_ready(self) -> bool:
        """Whether the provider can accept messages."""

    async def send_message(self, prompt: str) -> str:
        """Send a single prompt and return the reply text."""


class ContentStore(Protocol):
    async def exists(self, path: str) -> bool:
        """Whether a note exists at the vault-relative ``path``."""

    async def create(self, path: str, content: str) -> str:
        """Create a note and return its vault-relative path."""

    async def modify(self, path: str, content: str) -> str:
        """Overwrite a note and return its vault-relative path."""


class CommandRunner(Protocol):
    async def run(
        self, command: str, payload: dict[str, Any] | None = None
    ) -> ShellResult:
        """Run ``command`` and return its captured output."""


class Notifier(Protocol):
    async def notify(self, text: str) -> None:
        """Deliver a short user-facing message."""


@dataclass
class Collaborators:
    """External services the execution pipeline dispatches actions to."""

    content_store: ContentStore
    agents: AgentCache | None = None
    prompts: PromptCache | None = None
    skills: SkillCache | None = None
    skill_registry: SkillRegistry | None = None
    ai_provider: AIProvider | None = None
    shell: CommandRunner | None = None
