"""Glob matching for feed include/exclude patterns.

Grammar: ``**`` matches any run of characters including ``/`` (so ``**/``
also matches zero directories), ``*`` matches any run not containing ``/``,
everything else is literal. Patterns match the
whole path relative to the source base, using ``/`` as separator.
"""

import re
from collections.abc import Iterable
from functools import lru_cache


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob to an anchored regex in a single left-to-right pass."""
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            # zero or more leading segments
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts), re.DOTALL)


def normalize_path(path: str) -> str:
    """Use ``/`` as the separator regardless of platform."""
    return path.replace("\\", "/")


def matches_glob(relative_path: str, pattern: str) -> bool:
    return compile_glob(pattern).fullmatch(normalize_path(relative_path)) is not None


def accepts(
    relative_path: str, include_patterns: Iterable[str], exclude_patterns: Iterable[str]
) -> bool:
    """Apply exclude-then-include evaluation.

    Any exclude match rejects. An empty include list accepts everything else;
    otherwise at least one include must match.
    """
    for pattern in exclude_patterns:
        if matches_glob(relative_path, pattern):
            return False

    includes = list(include_patterns)
    if not includes:
        return True
    return any(matches_glob(relative_path, pattern) for pattern in includes)
