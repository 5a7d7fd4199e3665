from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import re
from typing import Iterable

from vault_automation.automations_lib.definitions import split_front_matter
from vault_automation.automations_lib.errors import ValidationError
from vault_automation.automations_lib.events import (
    EVENT_CREATE,
    EVENT_DELETE,
    EVENT_MODIFY,
    EVENT_RENAME,
    EVENT_TAGS_CHANGED,
    EVENT_VAULT_OPENED,
    TagCache,
    VaultEventHub,
)
from vault_automation.automations_lib.watcher import DirectoryWatcher


logger = logging.getLogger(__name__)

# Inline #tag: not preceded by a word char, '#', '/' or '&' (anchors, entities, urls).
_INLINE_TAG_RE = re.compile(r"(?<![\w#/&])#([A-Za-z0-9_][\w/-]*)")
_CODE_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`[^`\n]*`")

_IGNORED_PARTS = {".git", ".obsidian", ".trash"}


def extract_tags(text: str) -> set[str]:
    """Front-matter ``tags`` plus inline ``#tags``, normalized to lower case."""
    try:
        metadata, body = split_front_matter(text)
    except ValidationError:
        metadata, body = {}, text
    tags: set[str] = set()
    raw = metadata.get("tags")
    if isinstance(raw, str):
        raw = [part for part in re.split(r"[,\s]+", raw) if part]
    if isinstance(raw, list):
        for item in raw:
            value = str(item).strip().lstrip("#").lower()
            if value:
                tags.add(value)
    stripped = _INLINE_CODE_RE.sub("", _CODE_FENCE_RE.sub("", body))
    for match in _INLINE_TAG_RE.finditer(stripped):
        if not match.group(1).isdigit():
            tags.add(match.group(1).lower())
    return tags


class FileSystemVault:
    """Local directory content store that reports its changes on a :class:`VaultEventHub`."""

    def __init__(
        self,
        root: str | Path,
        hub: VaultEventHub,
        *,
        ignored: Iterable[str | Path] = (),
    ) -> None:
        self._root = Path(root)
        self._hub = hub
        self._watcher: DirectoryWatcher | None = None
        # Engine-owned files (state, audit log) must not feed back into triggers.
        self._ignored = {Path(item).resolve() for item in ignored}

    @property
    def root(self) -> Path:
        return self._root

    @property
    def watching(self) -> bool:
        return self._watcher is not None and self._watcher.running

    def resolve(self, path: str) -> Path:
        candidate = (self._root / path).resolve()
        root = self._root.resolve()
        if candidate != root and root not in candidate.parents:
            raise ValueError(f"Path escapes the vault: {path}")
        return candidate

    def relative(self, path: str | Path) -> str | None:
        try:
            return Path(path).resolve().relative_to(self._root.resolve()).as_posix()
        except ValueError:
            return None

    async def exists(self, path: str) -> bool:
        return self.resolve(path).is_file()

    async def read(self, path: str) -> str:
        return await asyncio.to_thread(self.resolve(path).read_text, encoding="utf-8")

    async def create(self, path: str, content: str) -> str:
        target = self.resolve(path)
        if target.exists():
            raise FileExistsError(f"Note already exists at {path}")
        await asyncio.to_thread(self._write, target, content)
        relative_path = self.relative(target) or path
        if not self.watching:
            self._announce(EVENT_CREATE, relative_path, content)
        return relative_path

    async def modify(self, path: str, content: str) -> str:
        target = self.resolve(path)
        if not target.is_file():
            raise FileNotFoundError(f"Note not found at {path}")
        await asyncio.to_thread(self._write, target, content)
        relative_path = self.relative(target) or path
        if not self.watching:
            self._announce(EVENT_MODIFY, relative_path, content)
        return relative_path

    def markdown_files(self) -> Iterable[Path]:
        for candidate in sorted(self._root.rglob("*.md")):
            if not candidate.is_file() or _IGNORED_PARTS.intersection(candidate.parts):
                continue
            if candidate.resolve() not in self._ignored:
                yield candidate

    async def prime_tags(self) -> dict[str, set[str]]:
        """Current tags of every note; used to seed the tag cache before watching."""
        return await asyncio.to_thread(self._collect_tags)

    def open(self) -> None:
        self._hub.emit(EVENT_VAULT_OPENED)

    def start_watching(self) -> None:
        if self._watcher is None:
            self._watcher = DirectoryWatcher(self._root, self._on_fs_event, path_filter=self._is_tracked)
        self._watcher.start()

    def stop_watching(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()

    def _collect_tags(self) -> dict[str, set[str]]:
        collected: dict[str, set[str]] = {}
        for candidate in self.markdown_files():
            relative_path = candidate.relative_to(self._root).as_posix()
            try:
                collected[relative_path] = extract_tags(candidate.read_text(encoding="utf-8"))
            except OSError:
                continue
        return collected

    def _is_tracked(self, path: str) -> bool:
        if Path(path).resolve() in self._ignored:
            return False
        relative_path = self.relative(path)
        if relative_path is None:
            return False
        return not _IGNORED_PARTS.intersection(relative_path.split("/"))

    def _on_fs_event(self, kind: str, src: str, dest: str | None = None) -> None:
        relative_src = self.relative(src)
        if relative_src is None:
            return
        if kind == "deleted":
            self._hub.emit(EVENT_DELETE, relative_src)
            return
        if kind == "moved":
            relative_dest = self.relative(dest) if dest else None
            if relative_dest is not None:
                self._hub.emit(EVENT_RENAME, relative_src, relative_dest)
            return
        event = EVENT_CREATE if kind == "created" else EVENT_MODIFY
        try:
            content = Path(src).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            content = None
        self._announce(event, relative_src, content)

    def _announce(self, event: str, relative_path: str, content: str | None) -> None:
        self._hub.emit(event, relative_path)
        if content is not None and relative_path.endswith(".md"):
            self._hub.emit(EVENT_TAGS_CHANGED, relative_path, extract_tags(content))

    @staticmethod
    def _write(target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


def seed_tag_cache(cache: TagCache, tags_by_path: dict[str, set[str]]) -> None:
    for path, tags in tags_by_path.items():
        cache.diff(path, tags)
