"""Automation engine for a markdown vault."""

from vault_automation.automations_lib.engine import AutomationEngine
from vault_automation.automations_lib.errors import (
    ActionExecutionError,
    AlreadyExistsError,
    AutomationError,
    NotFoundError,
    PersistenceError,
    SchedulingError,
    ValidationError,
)
from vault_automation.automations_lib.events import EventRouter, TagCache, VaultEventHub
from vault_automation.automations_lib.models import (
    AutomationConfig,
    AutomationExecutionResult,
    AutomationInstance,
    config_from_dict,
)
from vault_automation.automations_lib.orchestrator import ExecutionPipeline
from vault_automation.automations_lib.registry import AutomationRegistry
from vault_automation.automations_lib.scheduler import TriggerScheduler

__all__ = [
    "ActionExecutionError",
    "AlreadyExistsError",
    "AutomationConfig",
    "AutomationEngine",
    "AutomationError",
    "AutomationExecutionResult",
    "AutomationInstance",
    "AutomationRegistry",
    "EventRouter",
    "ExecutionPipeline",
    "NotFoundError",
    "PersistenceError",
    "SchedulingError",
    "TagCache",
    "TriggerScheduler",
    "ValidationError",
    "VaultEventHub",
    "config_from_dict",
]
