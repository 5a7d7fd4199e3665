from __future__ import annotations

from vault_automation.automations_lib.glob_matcher import glob_to_regex, matches_pattern


def test_double_star_spans_directories() -> None:
    assert matches_pattern("notes/a/b.md", "notes/**/*.md") is True
    assert matches_pattern("notes/a/b/c.md", "notes/**/*.md") is True
    assert matches_pattern("other/a.md", "notes/**/*.md") is False
    assert matches_pattern("notes.md", "notes/**/*.md") is False


def test_single_star_stays_within_segment() -> None:
    assert matches_pattern("daily/2024-05-10.md", "daily/*.md") is True
    assert matches_pattern("daily/archive/2024-05-10.md", "daily/*.md") is False


def test_question_mark_matches_one_character() -> None:
    assert matches_pattern("inbox/a1.md", "inbox/a?.md") is True
    assert matches_pattern("inbox/a12.md", "inbox/a?.md") is False


def test_other_metacharacters_keep_regex_meaning() -> None:
    # "." is not escaped, so it matches any character.
    assert matches_pattern("notesXmd", "notes.md") is True
    assert glob_to_regex("notes.md").pattern == "^notes.md$"


def test_invalid_regex_never_matches() -> None:
    assert matches_pattern("notes/(a.md", "notes/(*.md") is False
