"""Rebuilds an uploaded cookbook from the Chef storage backend."""

from __future__ import annotations

import hashlib
import io
import json
import logging
import os
import tarfile
import time
from typing import Dict, Optional, Tuple

from constants import Constants
from common.errors import BackendError, BundleTooLargeError
from common.logging_utils import Timer

from .models import CandidatePackage, CookbookVersion

logger = logging.getLogger(__name__)


def normalize_line_endings(content: bytes) -> bytes:
    """Convert CRLF line endings to LF."""
    return content.replace(b"\r\n", b"\n")


def md5_hex(content: bytes) -> str:
    return hashlib.md5(content).hexdigest()


def metadata_json(cookbook: CookbookVersion) -> bytes:
    """Pretty printed metadata with ``<``, ``>`` and ``&`` left unescaped."""
    return json.dumps(cookbook.metadata, indent=2, ensure_ascii=False).encode("utf-8")


def _add_to_tar(tar: tarfile.TarFile, name: str, content: bytes) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(content)
    info.mode = 0o644
    info.mtime = int(time.time())
    tar.addfile(info, io.BytesIO(content))


def _safe_join(root: str, rel_path: str) -> str:
    target = os.path.normpath(os.path.join(root, rel_path))
    if not target.startswith(os.path.normpath(root) + os.sep):
        raise BackendError(f"Refusing to write {rel_path} outside of {root}")
    return target


class ArchiveBuilder:
    """Fetches every file of a candidate, hashes it and packs it as ``tar.gz``.

    The archive holds ``<name>/<path>`` entries plus a synthesized
    ``metadata.json`` when the upload does not contain one.
    """

    def __init__(self, storage, chef_client=None, max_files: int = Constants.MAX_BUNDLE_FILES,
                 max_bytes: int = Constants.MAX_BUNDLE_BYTES):
        self._storage = storage
        self._chef = chef_client
        self._max_files = max_files
        self._max_bytes = max_bytes
        self._org_id: Optional[str] = None

    def _organization_id(self, candidate: CandidatePackage) -> Optional[str]:
        if not self._storage.needs_organization_id:
            return None
        if self._org_id is None:
            try:
                self._org_id = self._chef.organization_id()
            except BackendError as exc:
                raise BackendError(
                    f"Failed to get organization ID for {candidate.organization}: {exc}"
                ) from exc
        return self._org_id

    def _fetch(self, candidate: CandidatePackage, org_id: Optional[str], path: str, checksum: str) -> bytes:
        try:
            return self._storage.fetch_file_content(checksum, org_id)
        except BackendError as exc:
            raise BackendError(
                f"Failed to download {path} from the {candidate.name} cookbook: {exc}"
            ) from exc

    def build(self, candidate: CandidatePackage) -> Tuple[Dict[str, str], bytes]:
        """Rebuild ``candidate`` and store hashes, ignore files and archive on it.

        Files are written below ``candidate.path`` when it is set.

        Returns:
            Tuple of (file hashes, archive bytes).

        Raises:
            BackendError: When any file cannot be fetched or written.
            BundleTooLargeError: When the file or byte limit is exceeded.
        """
        cookbook = candidate.cookbook
        org_id = self._organization_id(candidate)

        # The ignore files decide which of the other files are fetched at all.
        for f in cookbook.root_files:
            if f.name == Constants.GITIGNORE_FILE:
                candidate.gitignore = self._fetch(candidate, org_id, f.path, f.checksum)
            elif f.name == Constants.CHEFIGNORE_FILE:
                candidate.chefignore = self._fetch(candidate, org_id, f.path, f.checksum)

        buf = io.BytesIO()
        total_bytes = 0
        hashes: Dict[str, str] = {}
        with Timer() as t:
            with tarfile.open(fileobj=buf, mode="w:gz") as tar:
                for f in cookbook.all_files():
                    if candidate.ignores(f.path, always_ignored=False):
                        continue
                    if len(hashes) >= self._max_files:
                        raise BundleTooLargeError(
                            f"The {cookbook.name} cookbook has more than {self._max_files} files"
                        )

                    content = normalize_line_endings(self._fetch(candidate, org_id, f.path, f.checksum))
                    total_bytes += len(content)
                    if total_bytes > self._max_bytes:
                        raise BundleTooLargeError(
                            f"The {cookbook.name} cookbook is larger than {self._max_bytes} bytes"
                        )

                    if candidate.path:
                        target = _safe_join(candidate.path, f.path)
                        try:
                            os.makedirs(os.path.dirname(target), exist_ok=True)
                            with open(target, "wb") as out:
                                out.write(content)
                        except OSError as exc:
                            raise BackendError(f"Failed to write file {target} to disk: {exc}") from exc

                    hashes[f.path] = md5_hex(content)
                    _add_to_tar(tar, f"{cookbook.name}/{f.path}", content)

                if not cookbook.has_root_file(Constants.METADATA_JSON):
                    _add_to_tar(tar, f"{cookbook.name}/{Constants.METADATA_JSON}", metadata_json(cookbook))

        logger.debug("Rebuilt cookbook %s %s: %d files in %d ms",
                     cookbook.name, cookbook.version, len(hashes), t.duration_ms())
        candidate.file_hashes = hashes
        candidate.archive = buf.getvalue()
        return hashes, candidate.archive
