"""gitignore-style path matching.

A blank line matches no files. A line starting with ``#`` is a comment; put
a backslash in front of the first hash for patterns that begin with one.

An optional ``!`` prefix negates the pattern: a path excluded by a previous
pattern becomes included again. Patterns are evaluated in order and the last
matching pattern decides. ``\\!`` matches a literal leading ``!``.

A pattern ending with a slash matches everything inside that directory. A
pattern without a leading slash matches at any depth; a leading slash anchors
it to the root. Wildcards never match a slash, except ``**`` as a whole
segment: leading ``**/`` matches in all directories, trailing ``/**`` matches
everything inside and ``/**/`` matches zero or more directories. Any other
use of consecutive asterisks is invalid.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Union

from common.errors import IgnorePatternError

from .glob import translate_glob


@dataclass(frozen=True)
class IgnorePattern:
    """A compiled ignore rule."""

    regex: "re.Pattern[str]"
    include: bool


def parse_pattern(pattern: str) -> IgnorePattern:
    """Compile one (non-blank, non-comment) gitignore line."""
    include = False
    if pattern.startswith("!"):
        pattern = pattern[1:]
        include = True
    elif pattern.startswith("\\#") or pattern.startswith("\\!"):
        pattern = pattern[1:]

    segments = pattern.split("/")

    # Unanchored patterns match at any depth, which is "**/<pattern>".
    if segments[0] == "":
        segments = segments[1:]
    elif segments[0] != "**":
        segments = ["**"] + segments

    # "dir/" means everything below "dir", which is "dir/**".
    if segments and segments[-1] == "":
        segments[-1] = "**"

    if not segments:
        raise IgnorePatternError(f"empty pattern {pattern!r}")

    expr = ["^"]
    need_slash = False
    last = len(segments) - 1
    for i, seg in enumerate(segments):
        if seg == "**":
            if i == 0 and i == last:
                expr.append(".+")
            elif i == 0:
                expr.append("(?:.+/)?")
                need_slash = False
            elif i == last:
                expr.append("/.+")
            else:
                expr.append("(?:/.+)?")
                need_slash = True
            continue
        if "**" in seg:
            raise IgnorePatternError(f"invalid '**' in segment {seg!r} of pattern {pattern!r}")
        if seg == "":
            raise IgnorePatternError(f"empty path segment in pattern {pattern!r}")
        if need_slash:
            expr.append("/")
        expr.append("[^/]+" if seg == "*" else translate_glob(seg))
        need_slash = True
    expr.append("$")

    try:
        regex = re.compile("".join(expr))
    except re.error as exc:
        raise IgnorePatternError(f"invalid pattern {pattern!r}: {exc}") from exc
    return IgnorePattern(regex=regex, include=include)


@lru_cache(maxsize=256)
def compile_patterns(content: bytes) -> List[IgnorePattern]:
    """Compile every rule of a gitignore file, in file order."""
    patterns = []
    for line in content.decode("utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        patterns.append(parse_pattern(line))
    return patterns


def git_ignore(content: Union[bytes, str, None], path: str) -> bool:
    """Return True when ``path`` is ignored by the gitignore ``content``.

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
