"""Translation of shell glob fragments into regular expressions."""

from __future__ import annotations

import re

from common.errors import IgnorePatternError


def translate_glob(glob: str, cross_slash: bool = False) -> str:
    """Translate a glob fragment into a regex fragment.

    Derived from ``fnmatch.translate()``. With ``cross_slash`` False this
    behaves like ``fnmatch()`` with ``FNM_PATHNAME``: wildcards never match
    a ``/``.

    Raises:
        IgnorePatternError: On an unterminated bracket expression or a
            dangling escape.
    """
    any_char = "." if cross_slash else "[^/]"
    regex = []
    i = 0
    while i < len(glob):
        char = glob[i]
        if char == "\\":
            if i + 1 >= len(glob):
                raise IgnorePatternError(f"trailing backslash in pattern {glob!r}")
            regex.append(re.escape(glob[i + 1]))
            i += 2
            continue
        if char == "*":
            regex.append(any_char + "*")
        elif char == "?":
            regex.append(any_char)
        elif char == "[":
            expr, i = _translate_bracket(glob, i)
            regex.append(expr)
            continue
        else:
            regex.append(re.escape(char))
        i += 1
    return "".join(regex)


def _translate_bracket(glob: str, start: int):
    """Translate the bracket expression opening at ``start``.

    ``[!...]`` and ``[^...]`` negate; a ``]`` right after the opening (or
    after the negation mark) is a literal member.

    Returns:
        Tuple of (regex fragment, index just past the closing bracket).
    """
    j = start + 1
    negate = False
    if j < len(glob) and glob[j] in "!^":
        negate = True
        j += 1
    first = j
    if j < len(glob) and glob[j] == "]":
        j += 1
    while j < len(glob) and glob[j] != "]":
        j += 1
    if j >= len(glob):
        raise IgnorePatternError(f"unterminated character class in pattern {glob!r}")

    body = "".join(char if char == "-" else re.escape(char) for char in glob[first:j])
    if negate:
        return f"[^/{body}]", j + 1
    return f"[{body}]", j + 1
