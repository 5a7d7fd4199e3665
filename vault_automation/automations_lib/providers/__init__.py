"""Concrete collaborators that automation actions dispatch to."""

from vault_automation.automations_lib.providers.ai_provider import HttpChatProvider
from vault_automation.automations_lib.providers.library_cache import MarkdownLibrary
from vault_automation.automations_lib.providers.shell_provider import ShellRunner
from vault_automation.automations_lib.providers.skill_registry import (
    InMemorySkillRegistry,
    RuntimeSkill,
)

__all__ = [
    "HttpChatProvider",
    "InMemorySkillRegistry",
    "MarkdownLibrary",
    "RuntimeSkill",
    "ShellRunner",
]
