"""Declarative automation files: ``*.automation.md`` with YAML front matter.

Example::

    ---
    name: Daily digest
    triggers:
      - type: schedule
        schedule: "0 9 * * *"
    actions:
      - type: run-prompt
        promptId: digest
    ---
    Collects yesterday's notes into a digest.

The body becomes the description when the front matter has none.
"""

from __future__ import annotations

import hashlib
from pathlib import PurePosixPath
import re
from typing import Any

import yaml

from vault_automation.automations_lib.errors import ValidationError
from vault_automation.automations_lib.models import (
    ORIGIN_DEFINITION,
    SOURCE_FORMAT_MARKDOWN,
    AutomationInstance,
    config_from_dict,
)


DEFINITION_SUFFIX = ".automation.md"

_FRONT_MATTER_RE = re.compile(
    r"\A\ufeff?---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z",
    re.DOTALL,
)
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """Return ``(metadata, body)``; metadata is empty when there is no block."""
    match = _FRONT_MATTER_RE.match(text or "")
    if match is None:
        return {}, text or ""
    try:
        metadata = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid front matter: {exc}") from exc
    if not isinstance(metadata, dict):
        raise ValidationError("Front matter must be a mapping")
    return metadata, match.group(2)


def is_definition_file(path: str) -> bool:
    return path.replace("\\", "/").rsplit("/", 1)[-1].endswith(DEFINITION_SUFFIX)


def normalize_source_path(source_path: str) -> str:
    normalized = source_path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.strip("/")


def definition_stem(source_path: str) -> str:
    name = PurePosixPath(normalize_source_path(source_path)).name
    if name.endswith(DEFINITION_SUFFIX):
        return name[: -len(DEFINITION_SUFFIX)]
    return name.rsplit(".", 1)[0]


def derive_automation_id(source_path: str) -> str:
    """Stable id derived from the vault-relative path; renaming changes identity."""
    normalized = normalize_source_path(source_path)
    slug = _SLUG_RE.sub("-", definition_stem(normalized).lower()).strip("-") or "automation"
    digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:8]
    return f"definition-{slug}-{digest}"


def parse_definition(text: str, source_path: str) -> AutomationInstance:
    normalized = normalize_source_path(source_path)
    try:
        metadata, body = split_front_matter(text)
    except ValidationError as exc:
        raise ValidationError(f"{normalized}: {exc}") from exc
    if not metadata:
        raise ValidationError(f"{normalized}: missing front matter block")

    # Files are live unless they opt out.
    enabled = metadata.get("enabled", True)
    payload = {
        "triggers": metadata.get("triggers"),
        "actions": metadata.get("actions"),
        "enabled": enabled,
        "runOnInstall": metadata.get("runOnInstall"),
    }
    try:
        config = config_from_dict(payload)
    except ValidationError as exc:
        raise ValidationError(f"{normalized}: {exc}") from exc

    name = str(metadata.get("name") or "").strip() or definition_stem(normalized)
    description = metadata.get("description")
    if description is None:
        description = body.strip() or None
    else:
        description = str(description).strip() or None

    return AutomationInstance(
        id=derive_automation_id(normalized),
        name=name,
        description=description,
        config=config,
        enabled=config.enabled,
        origin=ORIGIN_DEFINITION,
        source_path=normalized,
        source_format=SOURCE_FORMAT_MARKDOWN,
        declared_enabled=config.enabled,
    )
