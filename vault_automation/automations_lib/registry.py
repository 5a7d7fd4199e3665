from __future__ import annotations

from dataclasses import fields
import logging
from typing import Any, Callable, Iterator

from vault_automation.automations_lib.errors import (
    AlreadyExistsError,
    NotFoundError,
    ValidationError,
)
from vault_automation.automations_lib.models import (
    AutomationConfig,
    AutomationInstance,
    validate_config,
)


logger = logging.getLogger(__name__)

Hook = Callable[[AutomationInstance], None]

_UPDATABLE_FIELDS = frozenset(f.name for f in fields(AutomationInstance)) - {"id"}


def _noop(_: AutomationInstance) -> None:
    return None


class AutomationRegistry:
    def __init__(
        self,
        *,
        on_activate: Hook | None = None,
        on_deactivate: Hook | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._automations: dict[str, AutomationInstance] = {}
        self._on_activate = on_activate or _noop
        self._on_deactivate = on_deactivate or _noop
        self._on_change = on_change or (lambda: None)

    def bind(
        self,
        *,
        on_activate: Hook,
        on_deactivate: Hook,
        on_change: Callable[[], None],
    ) -> None:
        self._on_activate = on_activate
        self._on_deactivate = on_deactivate
        self._on_change = on_change

    def load(self, automations: dict[str, AutomationInstance]) -> None:
        self._automations = dict(automations)

    def __contains__(self, automation_id: object) -> bool:
        return automation_id in self._automations

    def __len__(self) -> int:
        return len(self._automations)

    def __iter__(self) -> Iterator[AutomationInstance]:
        return iter(list(self._automations.values()))

    def get(self, automation_id: str) -> AutomationInstance | None:
        return self._automations.get(automation_id)

    def require(self, automation_id: str) -> AutomationInstance:
        automation = self._automations.get(automation_id)
        if automation is None:
            raise NotFoundError(automation_id)
        return automation

    def all(self) -> list[AutomationInstance]:
        return list(self._automations.values())

    def enabled(self) -> list[AutomationInstance]:
        return [item for item in self._automations.values() if item.enabled]

    def snapshot(self) -> dict[str, AutomationInstance]:
        return dict(self._automations)

    def register(self, automation: AutomationInstance) -> None:
        if not automation.id:
            raise ValidationError("Automation must have an id")
        if automation.id in self._automations:
            raise AlreadyExistsError(automation.id)
        validate_config(automation.config)
        logger.info(
            "registering automation",
            extra={
                "event": "automation_registered",
                "automation_id": automation.id,
                "source": automation.origin,
            },
        )
        self._automations[automation.id] = automation
        if automation.enabled:
            self._on_activate(automation)
        self._on_change()

    def unregister(self, automation_id: str) -> AutomationInstance | None:
        automation = self._automations.get(automation_id)
        if automation is None:
            logger.warning(
                "automation not found for unregister",
                extra={"event": "automation_unregister_missing", "automation_id": automation_id},
            )
            return None
        logger.info(
            "unregistering automation",
            extra={"event": "automation_unregistered", "automation_id": automation_id},
        )
        self._on_deactivate(automation)
        del self._automations[automation_id]
        self._on_change()
        return automation

    def enable(self, automation_id: str) -> AutomationInstance:
        automation = self.require(automation_id)
        if not automation.enabled:
            automation.enabled = True
            self._on_activate(automation)
            self._on_change()
            logger.info(
                "automation enabled",
                extra={"event": "automation_enabled", "automation_id": automation_id},
            )
        return automation

    def disable(self, automation_id: str) -> AutomationInstance:
        automation = self.require(automation_id)
        if automation.enabled:
            automation.enabled = False
            self._on_deactivate(automation)
            self._on_change()
            logger.info(
                "automation disabled",
                extra={"event": "automation_disabled", "automation_id": automation_id},
            )
        return automation

    def update(self, automation_id: str, **changes: Any) -> AutomationInstance:
        automation = self.require(automation_id)
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown automation field(s): {', '.join(sorted(unknown))}"
            )
        config = changes.get("config")
        if config is not None:
            if not isinstance(config, AutomationConfig):
                raise ValidationError("config must be an AutomationConfig")
            validate_config(config)

        self._on_deactivate(automation)
        # Mutate in place so in-flight runs holding the instance see the update.
        for name, value in changes.items():
            setattr(automation, name, value)
        if automation.enabled:
            self._on_activate(automation)
        self._on_change()
        logger.info(
            "automation updated",
            extra={
                "event": "automation_updated",
                "automation_id": automation_id,
                "status": ",".join(sorted(changes)),
            },
        )
        return automation
