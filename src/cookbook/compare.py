"""Compares a rebuilt cookbook against its resolved source."""

from __future__ import annotations

import io
import logging
import tarfile
from typing import Dict, Optional

from constants import Constants
from common.errors import BackendError, ContentMismatchError
from common.http_client import new_session, response_error, safe_get
from settings import GuardConfig

from .archive import md5_hex, normalize_line_endings
from .models import (
    LOCATION_GITHUB,
    LOCATION_GITLAB,
    LOCATION_SUPERMARKET,
    CandidatePackage,
    DiscrepancyReport,
    SourceReference,
)

logger = logging.getLogger(__name__)

_REMEDIATION = {
    LOCATION_SUPERMARKET: (
        "Make sure you are using an unchanged community version\n"
        "or, if you really need to change something, make a fork to\n"
        "https://github.com and create a pull request back to the\n"
        "community cookbook before trying to upload the cookbook again.\n"
    ),
    LOCATION_GITHUB: (
        "Make sure all your changes are merged into the central\n"
        "repositories before trying to upload the cookbook again.\n"
    ),
}
_REMEDIATION[LOCATION_GITLAB] = _REMEDIATION[LOCATION_GITHUB]


def _bullets(paths) -> str:
    return "\n - ".join(paths)


def format_mismatch(report: DiscrepancyReport) -> Optional[str]:
    """Describe the highest priority discrepancy: changed, then extra, then missing."""
    if report.changed:
        return f"The following file(s) are changed:\n - {_bullets(report.changed)}"
    if report.extra:
        return f"Your upload contains more files than the source cookbook:\n - {_bullets(report.extra)}"
    if report.missing:
        return f"The source cookbook contains more files than your upload:\n - {_bullets(report.missing)}"
    return None


def raise_for_report(report: DiscrepancyReport, source: SourceReference) -> None:
    """Raise ``ContentMismatchError`` with remediation text for a non-empty report."""
    detail = format_mismatch(report)
    if detail is None:
        return
    remediation = _REMEDIATION.get(source.location_type)
    if remediation:
        body = f"{detail}\n\nSource: {source.download_url}\n\n{remediation}"
    else:
        body = f"{detail}\n\nSource: {source.download_url}\n"
    raise ContentMismatchError(
        "\n=== Cookbook Compare errors found ===\n"
        f"{body}"
        "=====================================\n"
    )


class ContentComparator:
    """Downloads a source archive and diffs it against the candidate's hashes."""

    def __init__(self, config: GuardConfig, session_factory=new_session):
        self._config = config
        self._session_factory = session_factory

    def _session(self, source: SourceReference):
        if source.location_type not in (LOCATION_GITHUB, LOCATION_GITLAB):
            return self._session_factory()
        settings = self._config.git.get(source.git_org)
        if settings is None:
            raise BackendError(f"No Git config specified for organization: {source.git_org}!")
        return self._session_factory(settings.ssl_no_verify)

    def source_file_hashes(self, candidate: CandidatePackage, source: SourceReference) -> Dict[str, str]:
        """Download and hash the source archive.

        A ``.gitignore`` or ``chefignore`` in the source replaces the
        candidate's copy, the source being authoritative.
        """
        url = source.download_url
        res = safe_get(url, context="source", session=self._session(source))
        if res.status_code != 200:
            raise BackendError(f"Failed to download the cookbook from {url}: {response_error(res)}")

        hashes: Dict[str, str] = {}
        try:
            with tarfile.open(fileobj=io.BytesIO(res.content), mode="r:gz") as tar:
                for member in tar:
                    if not member.isreg():
                        continue
                    parts = member.name.split("/", 1)
                    if len(parts) < 2 or not parts[1]:
                        continue
                    path = parts[1]
                    content = tar.extractfile(member).read()
                    if path == Constants.GITIGNORE_FILE:
                        candidate.gitignore = content
                    elif path == Constants.CHEFIGNORE_FILE:
                        candidate.chefignore = content
                    hashes[path] = md5_hex(normalize_line_endings(content))
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise BackendError(f"Failed to process all files: {exc}") from exc
        return hashes

    def compare(self, candidate: CandidatePackage, source: SourceReference) -> DiscrepancyReport:
        """Classify every path as matching, changed, extra or missing.

        ``metadata.json`` never takes part; extra and missing paths are only
        reported when the ignore rules do not exclude them.
        """
        source_hashes = self.source_file_hashes(candidate, source)
        source_hashes.pop(Constants.METADATA_JSON, None)
        return diff_hashes(candidate, source_hashes)


def diff_hashes(candidate: CandidatePackage, source_hashes: Dict[str, str]) -> DiscrepancyReport:
    """Diff the candidate's hashes against ``source_hashes`` (which is consumed)."""
    report = DiscrepancyReport()
    for path in sorted(candidate.file_hashes):
        if path == Constants.METADATA_JSON:
            continue
        digest = candidate.file_hashes[path]
        source_digest = source_hashes.pop(path, None)
        if source_digest is not None:
            if source_digest != digest:
                report.changed.append(path)
        elif not candidate.ignores(path):
            report.extra.append(path)

    report.missing = sorted(path for path in source_hashes if not candidate.ignores(path))
    return report
