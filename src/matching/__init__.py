"""Ignore-file matching for cookbook content comparison.

Two grammars are supported: gitignore (path segments, ``**`` and anchors)
and chefignore (plain globs with negation).
"""

from enum import Enum
from typing import Union

from .chefignore import chef_ignore
from .gitignore import git_ignore


class IgnoreGrammar(Enum):
    """Supported ignore-file grammars."""

    GITIGNORE = "gitignore"
    CHEFIGNORE = "chefignore"


def is_ignored(grammar: IgnoreGrammar, content: Union[bytes, str, None], path: str) -> bool:
    """Return True when ``path`` is excluded by ``content`` in ``grammar``.

    Raises:
        IgnorePatternError: When ``content`` holds a malformed pattern.
    """
    if grammar == IgnoreGrammar.GITIGNORE:
        return git_ignore(content, path)
    return chef_ignore(content, path)


__all__ = ["IgnoreGrammar", "is_ignored", "git_ignore", "chef_ignore"]
