from __future__ import annotations


class AutomationError(Exception):
    """Base class for every error raised by the automation engine."""


class ValidationError(AutomationError, ValueError):
    """Malformed trigger/action configuration."""


class NotFoundError(AutomationError, LookupError):
    def __init__(self, automation_id: str) -> None:
        super().__init__(f"Automation {automation_id} not found")
        self.automation_id = automation_id


class AlreadyExistsError(AutomationError):
    def __init__(self, automation_id: str) -> None:
        super().__init__(f"Automation with ID {automation_id} already exists")
        self.automation_id = automation_id


class SchedulingError(AutomationError):
    """Cron expression could not be parsed or has no future occurrence."""


class ActionExecutionError(AutomationError):
    """Wraps a failure raised by a collaborator invoked from an action."""


class PersistenceError(AutomationError):
    """State could not be read from or written to disk."""
