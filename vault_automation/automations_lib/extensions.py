from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from vault_automation.automations_lib.engine import AutomationEngine
from vault_automation.automations_lib.errors import AutomationError, ValidationError
from vault_automation.automations_lib.models import (
    ORIGIN_EXTENSION,
    AutomationInstance,
    config_from_dict,
)


logger = logging.getLogger(__name__)


async def handle_extension_install(
    engine: AutomationEngine,
    extension_id: str,
    display_name: str,
    config_path: str | Path,
) -> AutomationInstance:
    """Register the automation shipped by an installed extension.

    ``config_path`` points at the extension's JSON config in the declarative
    camelCase form. Registration errors propagate to the installer.
    """
    logger.info(
        "installing extension automation",
        extra={"event": "extension_install", "automation_id": extension_id},
    )
    try:
        raw = await asyncio.to_thread(Path(config_path).read_text, encoding="utf-8")
        payload = json.loads(raw)
    except OSError as exc:
        raise ValidationError(f"Cannot read automation config {config_path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Automation config {config_path} is not valid JSON: {exc}") from exc

    config = config_from_dict(payload)
    automation = AutomationInstance(
        id=extension_id,
        name=display_name or extension_id,
        description=payload.get("description") if isinstance(payload, dict) else None,
        config=config,
        enabled=config.enabled,
        origin=ORIGIN_EXTENSION,
    )
    engine.register_automation(automation)

    if config.run_on_install:
        logger.info(
            "running extension automation on install",
            extra={"event": "run_on_install", "automation_id": extension_id},
        )
        await engine.run_automation(extension_id)
    return automation


async def handle_extension_uninstall(engine: AutomationEngine, extension_id: str) -> None:
    try:
        engine.unregister_automation(extension_id)
    except AutomationError:
        # Uninstall proceeds even when the automation cannot be removed.
        logger.exception(
            "failed to unregister extension automation",
            extra={"event": "extension_uninstall_error", "automation_id": extension_id},
        )
        return
    logger.info(
        "extension automation removed",
        extra={"event": "extension_uninstall", "automation_id": extension_id},
    )
