"""Data model of an in-flight cookbook upload."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from constants import Constants
from common.errors import BackendError, IgnorePatternError
from matching import IgnoreGrammar, is_ignored

logger = logging.getLogger(__name__)

# File roles of a cookbook version, in the order the files are processed.
FILE_GROUPS = (
    "files",
    "definitions",
    "libraries",
    "attributes",
    "recipes",
    "providers",
    "resources",
    "templates",
    "root_files",
)

LOCATION_SUPERMARKET = "supermarket"
LOCATION_GITHUB = "github"
LOCATION_GITLAB = "gitlab"


@dataclass
class CookbookFile:
    """A single file of a cookbook version as listed by the Chef server."""

    name: str
    path: str
    checksum: str
    specificity: str = "default"
    url: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CookbookFile":
        path = data.get("path") or data.get("name") or ""
        return cls(
            name=data.get("name") or os.path.basename(path),
            path=path,
            checksum=data.get("checksum", ""),
            specificity=data.get("specificity", "default"),
            url=data.get("url", ""),
        )


@dataclass
class CookbookVersion:
    """A cookbook version manifest as sent in an upload request."""

    name: str
    version: str
    frozen: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    files: Dict[str, List[CookbookFile]] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CookbookVersion":
        """Build from the JSON body of a ``PUT /cookbooks/<name>/<version>``."""
        metadata = data.get("metadata") or {}
        name = data.get("cookbook_name") or metadata.get("name") or ""
        version = data.get("version") or metadata.get("version") or ""
        groups = {
            group: [CookbookFile.from_dict(item) for item in (data.get(group) or [])]
            for group in FILE_GROUPS
        }
        return cls(
            name=name,
            version=version,
            frozen=bool(data.get("frozen?", False)),
            metadata=metadata,
            files=groups,
        )

    @property
    def root_files(self) -> List[CookbookFile]:
        return self.files.get("root_files", [])

    @property
    def dependencies(self) -> Optional[Dict[str, str]]:
        return self.metadata.get("dependencies")

    def all_files(self) -> List[CookbookFile]:
        """Every file of every role flattened into one list."""
        result: List[CookbookFile] = []
        for group in FILE_GROUPS:
            result.extend(self.files.get(group, []))
        return result

    def has_root_file(self, name: str) -> bool:
        return any(f.name == name for f in self.root_files)


@dataclass
class SourceReference:
    """Where the authoritative copy of a cookbook version lives.

    ``artifact`` marks a pre-packaged registry tarball, ``tagged`` marks a git
    hit on the exact ``v<version>`` tag rather than the default branch.
    """

    location_type: str
    download_url: str
    artifact: bool = False
    private: bool = False
    tagged: bool = False
    git_org: str = ""
    location_path: str = ""


@dataclass
class DiscrepancyReport:
    """Result of comparing a candidate against its source."""

    changed: List[str] = field(default_factory=list)
    extra: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.changed or self.extra or self.missing)


@dataclass
class CandidatePackage:
    """State of one upload while it moves through the gate.

    Owned by a single gate invocation; the on-disk copy lives under ``path``
    only inside ``workspace()``.
    """

    cookbook: CookbookVersion
    organization: str = ""
    user: str = ""
    forced: bool = False
    file_hashes: Dict[str, str] = field(default_factory=dict)
    gitignore: bytes = b""
    chefignore: bytes = b""
    archive: bytes = b""
    path: str = ""

    @property
    def name(self) -> str:
        return self.cookbook.name

    @property
    def version(self) -> str:
        return self.cookbook.version

    def ignores(self, path: str, always_ignored: bool = True) -> bool:
        """Return True when ``path`` takes no part in the content comparison.

        ``metadata.rb``, ``metadata.json`` and everything under ``spec/`` are
        always ignored unless ``always_ignored`` is False. Otherwise the
        gitignore rules are consulted first and chefignore second.

        Raises:
            BackendError: When an ignore file holds a malformed pattern.
        """
        if always_ignored and (
            path in (Constants.METADATA_RB, Constants.METADATA_JSON) or path.startswith("spec/")
        ):
            return True
        try:
            if is_ignored(IgnoreGrammar.GITIGNORE, self.gitignore, path):
                return True
            return is_ignored(IgnoreGrammar.CHEFIGNORE, self.chefignore, path)
        except IgnorePatternError as exc:
            raise BackendError(f"Ignore check failed for file {path}: {exc}") from exc

    @contextmanager
    def workspace(self, tempdir: str) -> Iterator[str]:
        """Create a private temp tree for this upload and remove it on exit."""
        os.makedirs(tempdir, exist_ok=True)
        prefix = f"{self.user or 'anonymous'}-{self.name}-".replace("/", "_").replace(os.sep, "_")
        self.path = tempfile.mkdtemp(prefix=prefix, dir=tempdir)
        try:
            yield self.path
        finally:
            try:
                shutil.rmtree(self.path)
            except OSError as exc:
                logger.warning("Failed to cleanup temp cookbook folder %s: %s", self.path, exc)
