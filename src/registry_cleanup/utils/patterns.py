"""Glob pattern matching shared by tag filters and package expansion."""

import re
from functools import lru_cache
from typing import Iterable, Pattern


@lru_cache(maxsize=256)
def compile_glob(pattern: str) -> Pattern[str]:
    """Compile a glob into an anchored, case-sensitive regex.

    ``*`` matches any run of characters (including none), ``?`` exactly
    one character; everything else is literal.
    """
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def compile_patterns(patterns: Iterable[str]) -> tuple[Pattern[str], ...]:
    """Compile a list of glob patterns, skipping blanks."""
    return tuple(compile_glob(p) for p in patterns if p)


def matches_any(name: str, patterns: Iterable[Pattern[str]]) -> bool:
    """Check if a name matches any compiled pattern."""
    return any(pattern.match(name) for pattern in patterns)


def expand_packages(
    patterns: list[str], all_packages: list[str], use_regex: bool = False
) -> list[str]:
    """Expand package name patterns against an enumerated package list.

    Args:
        patterns: Wildcard globs, or regular expressions when ``use_regex``
        all_packages: Every package name the backend reported
        use_regex: Treat patterns as unanchored regular expressions

    Returns:
        Matching package names, de-duplicated, in discovery order
    """
    if not patterns:
        return list(all_packages)

    expanded: list[str] = []
    for pattern in patterns:
        if use_regex:
            regex = re.compile(pattern)
            matches = [pkg for pkg in all_packages if regex.search(pkg)]
        else:
            glob = compile_glob(pattern)
            matches = [pkg for pkg in all_packages if glob.match(pkg)]
        expanded.extend(matches)

    return list(dict.fromkeys(expanded))
