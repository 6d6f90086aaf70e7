"""chefignore-style path matching.

Each line is a shell glob matched against the whole relative path, where
``*`` also matches slashes (``*~`` ignores backup files at any depth).
``?`` and bracket classes (``[a-z]``, ``[!a]``, ``[^a]``) are supported.
Comments, ``!`` negation and backslash escapes behave as in gitignore files
and the last matching line decides.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import List, Union

from common.errors import IgnorePatternError

from .gitignore import IgnorePattern
from .glob import translate_glob


def parse_pattern(pattern: str) -> IgnorePattern:
    """Compile one (non-blank, non-comment) chefignore line."""
    include = False
    if pattern.startswith("!"):
        pattern = pattern[1:]
        include = True
    elif pattern.startswith("\\#") or pattern.startswith("\\!"):
        pattern = pattern[1:]
    try:
        regex = re.compile("^" + translate_glob(pattern, cross_slash=True) + "$", re.DOTALL)
    except re.error as exc:
        raise IgnorePatternError(f"invalid pattern {pattern!r}: {exc}") from exc
    return IgnorePattern(regex=regex, include=include)


@lru_cache(maxsize=256)
def compile_patterns(content: bytes) -> List[IgnorePattern]:
    """Compile every rule of a chefignore file, in file order."""
    patterns = []
    for line in content.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(parse_pattern(line))
    return patterns


def chef_ignore(content: Union[bytes, str, None], path: str) -> bool:
    """Return True when ``path`` is ignored by the chefignore ``content``.

    Raises:
        IgnorePatternError: When a pattern in ``content`` is malformed.
    """
    if not content:
        return False
    if isinstance(content, str):
        content = content.encode("utf-8")

    ignore = False
    for pattern in compile_patterns(content):
        if pattern.regex.match(path):
            ignore = not pattern.include
    return ignore
