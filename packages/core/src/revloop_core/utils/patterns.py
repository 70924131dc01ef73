"""Glob exclusion patterns compiled to case-insensitive regular expressions.

    **  → any characters, including "/"
    *   → any characters except "/"
    ?   → any single character
"""

from __future__ import annotations

import re
from typing import Iterable


def glob_to_regex(glob: str) -> re.Pattern:
    escaped = re.escape(glob)
    pattern = escaped.replace(r"\*\*", ".*").replace(r"\*", "[^/]*").replace(r"\?", ".")
    return re.compile(f"^{pattern}$", re.IGNORECASE)


def compile_exclude_patterns(globs: Iterable[str]) -> list[re.Pattern]:
    return [glob_to_regex(g) for g in globs if g]


def is_excluded(path: str, patterns: list[re.Pattern]) -> bool:
    """Return True if the bare filename or the full path matches any pattern."""
    file_name = path.replace("\\", "/").rsplit("/", 1)[-1]
    return any(p.match(file_name) or p.match(path) for p in patterns)
