"""Upload gate: sequences the checks a frozen cookbook upload must pass.

``received -> frozen-check -> archive-build -> source-resolve -> lint checks
-> compare -> dependency-validate -> tag/publish``. Any failure raises a
``GateError`` whose status is returned to the client; nothing is retried.
"""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from constants import GateMode
from common.errors import (
    BackendError,
    CheckFailedError,
    ClientFaultError,
    FrozenCookbookError,
    GateError,
    SourceNotFoundError,
)
from common.stats import GateStats
from settings import GuardConfig, OptionKey

from .archive import ArchiveBuilder
from .checks import CheckRunner
from .compare import ContentComparator, raise_for_report
from .constraints import DependencyValidator
from .models import CandidatePackage, CookbookVersion, SourceReference
from .publish import Publisher
from .search import SourceResolver

logger = logging.getLogger(__name__)

FROZEN_MESSAGE = (
    "\n=== Cookbook Upload error found ===\n"
    "The cookbook you are trying to upload is frozen!\n"
    "It is not allowed to overwrite a frozen cookbook,\n"
    "so please bump the version and try again.\n"
    "===================================\n"
)

# Counter names reported on the health endpoint.
EVENT_PASSED = "upload_passed"
EVENT_PASSTHROUGH = "upload_passthrough"
EVENT_REJECTED = "upload_rejected"
EVENT_BACKEND_FAILED = "upload_backend_failed"
EVENT_CHECK_BYPASSED = "check_bypassed"
EVENT_CHECK_DENIED = "check_denied"


def audit_record(name: str, version: str, frozen: bool, forced: bool,
                 source: Optional[str] = None) -> bytes:
    """JSON document committed to the audit repository for a cookbook change."""
    return json.dumps(
        {
            "name": name,
            "version": version,
            "frozen": frozen,
            "forcedupload": forced,
            "source": source or "N/A",
        },
        separators=(",", ":"),
    ).encode("utf-8")


@dataclass
class UploadRequest:
    """A ``PUT`` of a cookbook version as seen by the proxy."""

    organization: str
    user: str
    body: bytes
    forced: bool = False


@dataclass
class GateResult:
    """Outcome of an upload that was let through."""

    candidate: CandidatePackage
    gated: bool = False
    source: Optional[SourceReference] = None
    bypassed: List[str] = field(default_factory=list)
    tag: Optional[str] = None


class UploadGate:
    """Runs one upload through every gate step.

    Collaborators are injected so each request gets its own instances.
    """

    def __init__(
        self,
        config: GuardConfig,
        chef,
        builder: ArchiveBuilder,
        resolver: SourceResolver,
        comparator: ContentComparator,
        publisher: Publisher,
        checks: Optional[CheckRunner] = None,
        stats: Optional[GateStats] = None,
    ):
        self._config = config
        self._chef = chef
        self._builder = builder
        self._resolver = resolver
        self._comparator = comparator
        self._publisher = publisher
        self._checks = checks
        self._stats = stats or GateStats()
        self.validator = DependencyValidator(chef.is_frozen)

    def process(self, request: UploadRequest) -> GateResult:
        """Gate one upload.

        Raises:
            GateError: The upload must be rejected with ``exc.status``.
        """
        try:
            result = self._process(request)
        except ClientFaultError:
            self._stats.incr(EVENT_REJECTED)
            raise
        except GateError:
            self._stats.incr(EVENT_BACKEND_FAILED)
            raise
        self._stats.incr(EVENT_PASSED if result.gated else EVENT_PASSTHROUGH)
        return result

    def _process(self, request: UploadRequest) -> GateResult:
        try:
            cookbook = CookbookVersion.from_dict(json.loads(request.body))
        except (ValueError, TypeError, AttributeError) as exc:
            raise BackendError(f"Failed to unmarshal body {request.body[:200]!r}: {exc}") from exc

        candidate = CandidatePackage(
            cookbook=cookbook,
            organization=request.organization,
            user=request.user,
            forced=request.forced,
        )
        result = GateResult(candidate=candidate)
        org = request.organization
        mode = self._config.effective(OptionKey.MODE, org)
        if mode == GateMode.SILENT.value:
            return result

        if self._chef.is_frozen(cookbook.name, cookbook.version):
            raise FrozenCookbookError(FROZEN_MESSAGE)
        if not cookbook.frozen:
            return result

        result.gated = True
        with candidate.workspace(self._config.default.tempdir):
            self._builder.build(candidate)

            try:
                source = self._resolver.resolve(org, cookbook.name, cookbook.version)
            except SourceNotFoundError as exc:
                raise SourceNotFoundError(
                    "\n=== Cookbook Compare errors found ===\n"
                    f"{exc.message}\n"
                    "=====================================\n"
                ) from exc
            result.source = source

            if not source.artifact:
                result.bypassed = self._run_checks(candidate, mode)

            report = self._comparator.compare(candidate, source)
            raise_for_report(report, source)

            if cookbook.dependencies:
                self.validator.check_dependencies(cookbook.dependencies)

            result.tag = self._publisher.tag_and_publish(candidate, source)

        logger.info("Accepted frozen upload of %s %s by %s", cookbook.name, cookbook.version, request.user)
        return result

    def _run_checks(self, candidate: CandidatePackage, mode: str) -> List[str]:
        """Run every configured lint check; return the ones that were bypassed."""
        bypassed: List[str] = []
        if self._checks is None:
            return bypassed
        for check in self._checks.enabled_checks():
            try:
                self._checks.run(check, candidate.path)
            except CheckFailedError:
                logger.warning("%s errors when uploading cookbook '%s' for '%s'",
                               check.capitalize(), candidate.name, candidate.user)
                if mode == GateMode.PERMISSIVE.value and candidate.forced:
                    self._stats.incr(EVENT_CHECK_BYPASSED)
                    bypassed.append(check)
                    continue
                self._stats.incr(EVENT_CHECK_DENIED)
                raise
        return bypassed


def build_chef_client(config: GuardConfig, org: str):
    """Signed Chef API client acting for ``org``.

    Raises:
        BackendError: When the client key cannot be read.
    """
    from chef.auth import signer_for
    from chef.client import ChefClient

    try:
        signer = signer_for(config.chef.user, config.chef.key)
    except (OSError, ValueError) as exc:
        raise BackendError(f"Failed to create new Chef API connection: {exc}") from exc
    return ChefClient(config.chef.base_url, signer, organization=org,
                      ssl_no_verify=config.chef.ssl_no_verify)


def build_gate(config: GuardConfig, org: str, stats: Optional[GateStats] = None) -> UploadGate:
    """Wire an ``UploadGate`` with the real clients for ``org``."""
    # Imported here so the gate module stays importable without the wire clients.
    from chef.auth import signer_for
    from chef.storage import StorageBackend
    from registry.supermarket import SupermarketClient
    from repository.base import backend_for

    chef = build_chef_client(config, org)
    sm_signer = None
    if config.supermarket.user and config.supermarket.key:
        try:
            sm_signer = signer_for(config.supermarket.user, config.supermarket.key)
        except (OSError, ValueError) as exc:
            raise BackendError(f"Failed to read Supermarket key: {exc}") from exc

    storage = StorageBackend(
        config.chef.base_url,
        server_type=config.chef.type,
        access_key=config.chef.bookshelf_key,
        secret=config.chef.bookshelf_secret,
        ssl_no_verify=config.chef.ssl_no_verify,
    )
    community = SupermarketClient(config.community.supermarket)
    private = None
    if config.supermarket.server:
        private = SupermarketClient(config.supermarket.base_url,
                                    ssl_no_verify=config.supermarket.ssl_no_verify,
                                    signer=sm_signer)
    git_backend = functools.partial(backend_for, config.git)

    return UploadGate(
        config,
        chef=chef,
        builder=ArchiveBuilder(storage, chef, config.default.max_files, config.default.max_bytes),
        resolver=SourceResolver(config, community, private, git_backend),
        comparator=ContentComparator(config),
        publisher=Publisher(config, git_backend, private),
        checks=CheckRunner(config, org),
        stats=stats,
    )
