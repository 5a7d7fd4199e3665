from __future__ import annotations

from pathlib import Path

import pytest

from vault_automation.automations_lib.events import (
    EVENT_CREATE,
    EVENT_MODIFY,
    EVENT_TAGS_CHANGED,
    EVENT_VAULT_OPENED,
    TagCache,
    VaultEventHub,
)
from vault_automation.vault import FileSystemVault, extract_tags, seed_tag_cache


def record(hub: VaultEventHub, *events: str) -> list[tuple]:
    seen: list[tuple] = []
    for event in events:
        hub.on(event, lambda *args, _event=event: seen.append((_event, *args)))
    return seen


def test_extract_tags_reads_front_matter_and_inline_tags() -> None:
    text = (
        "---\n"
        "tags: [Project, '#Review']\n"
        "---\n"
        "Working on #todo and #Area/Work.\n"
        "Issue #42 and url https://x.example/#anchor\n"
        "```\n#not-a-tag\n```\n"
        "`#inline-code`\n"
    )

    assert extract_tags(text) == {"project", "review", "todo", "area/work"}


def test_extract_tags_accepts_string_front_matter() -> None:
    assert extract_tags("---\ntags: alpha, beta\n---\nbody") == {"alpha", "beta"}


@pytest.mark.asyncio
async def test_create_and_modify_emit_events_with_tags(tmp_path: Path) -> None:
    hub = VaultEventHub()
    seen = record(hub, EVENT_CREATE, EVENT_MODIFY, EVENT_TAGS_CHANGED)
    vault = FileSystemVault(tmp_path, hub)

    created = await vault.create("inbox/idea.md", "Draft #idea")
    await vault.modify("inbox/idea.md", "Done #idea #review")

    assert created == "inbox/idea.md"
    assert await vault.read("inbox/idea.md") == "Done #idea #review"
    assert seen == [
        (EVENT_CREATE, "inbox/idea.md"),
        (EVENT_TAGS_CHANGED, "inbox/idea.md", {"idea"}),
        (EVENT_MODIFY, "inbox/idea.md"),
        (EVENT_TAGS_CHANGED, "inbox/idea.md", {"idea", "review"}),
    ]


@pytest.mark.asyncio
async def test_create_and_modify_guard_existence(tmp_path: Path) -> None:
    vault = FileSystemVault(tmp_path, VaultEventHub())
    await vault.create("a.md", "")

    with pytest.raises(FileExistsError):
        await vault.create("a.md", "again")
    with pytest.raises(FileNotFoundError):
        await vault.modify("missing.md", "x")
    assert await vault.exists("a.md") is True
    assert await vault.exists("missing.md") is False


@pytest.mark.asyncio
async def test_paths_cannot_escape_the_vault(tmp_path: Path) -> None:
    vault = FileSystemVault(tmp_path / "vault", VaultEventHub())

    with pytest.raises(ValueError, match="escapes the vault"):
        await vault.create("../outside.md", "x")


@pytest.mark.asyncio
async def test_prime_tags_skips_hidden_folders(tmp_path: Path) -> None:
    (tmp_path / "notes").mkdir()
    (tmp_path / "notes" / "a.md").write_text("#one", encoding="utf-8")
    (tmp_path / ".obsidian").mkdir()
    (tmp_path / ".obsidian" / "b.md").write_text("#two", encoding="utf-8")
    vault = FileSystemVault(tmp_path, VaultEventHub())
    cache = TagCache()

    seed_tag_cache(cache, await vault.prime_tags())

    assert cache.get("notes/a.md") == frozenset({"one"})
    assert cache.get(".obsidian/b.md") == frozenset()


def test_filesystem_events_are_translated(tmp_path: Path) -> None:
    hub = VaultEventHub()
    seen = record(hub, EVENT_CREATE, "delete", "rename", EVENT_TAGS_CHANGED, EVENT_VAULT_OPENED)
    vault = FileSystemVault(tmp_path, hub)
    note = tmp_path / "a.md"
    note.write_text("#fresh", encoding="utf-8")

    vault._on_fs_event("created", str(note))
    vault._on_fs_event("moved", str(note), str(tmp_path / "b.md"))
    vault._on_fs_event("deleted", str(tmp_path / "b.md"))
    vault._on_fs_event("created", "/elsewhere/c.md")
    vault.open()

    assert seen == [
        (EVENT_CREATE, "a.md"),
        (EVENT_TAGS_CHANGED, "a.md", {"fresh"}),
        ("rename", "a.md", "b.md"),
        ("delete", "b.md"),
        (EVENT_VAULT_OPENED,),
    ]


def test_ignored_files_are_not_tracked(tmp_path: Path) -> None:
    audit = tmp_path / ".vault-automation" / "audit-log.md"
    audit.parent.mkdir()
    audit.write_text("## run #ok", encoding="utf-8")
    (tmp_path / "note.md").write_text("#kept", encoding="utf-8")
    vault = FileSystemVault(tmp_path, VaultEventHub(), ignored=[audit])

    assert vault._is_tracked(str(audit)) is False
    assert vault._is_tracked(str(tmp_path / "note.md")) is True
    assert [path.name for path in vault.markdown_files()] == ["note.md"]
