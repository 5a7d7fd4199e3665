from __future__ import annotations

from functools import lru_cache
import re


# Only `**`, `*` and `?` are translated. Any other regex metacharacter in the
# pattern keeps its regex meaning (`.` matches any character, and so on).
@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    translated = (
        pattern.replace("**", "\0")
        .replace("*", "[^/]*")
        .replace("\0", ".*")
        .replace("?", ".")
    )
    return re.compile(f"^{translated}$")


def matches_pattern(path: str, pattern: str) -> bool:
    try:
        regex = glob_to_regex(pattern)
    except re.error:
        return False
    return regex.match(path) is not None
