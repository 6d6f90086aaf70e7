"""Locates the authoritative source of a cookbook version.

Search order, first hit wins:

1. the community Supermarket; a known cookbook with an unknown version falls
   back to the configured community forks (tags only) and fails otherwise,
2. the organization-private Supermarket,
3. the configured git organizations: tag ``v<version>``, else the default
   branch.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from constants import Constants
from common.errors import SourceNotFoundError
from settings import GuardConfig, OptionKey

from .models import LOCATION_SUPERMARKET, SourceReference

logger = logging.getLogger(__name__)

UNKNOWN_COMMUNITY_VERSION = (
    "You are trying to upload '{name}' version '{version}' which is a\n"
    "non-existing version of a community cookbook! Make sure you are using\n"
    "an existing community version, or a fork with a pending pull request."
)


class SourceResolver:
    """Resolves ``(name, version)`` to a ``SourceReference``.

    Args:
        config: Active configuration.
        community: Client for the public Supermarket.
        private: Client for the private Supermarket, if one is configured.
        git_backend: Callable returning the ``GitBackend`` for an organization.
    """

    def __init__(self, config: GuardConfig, community, private=None,
                 git_backend: Optional[Callable[[str], object]] = None):
        self._config = config
        self._community = community
        self._private = private
        self._git_backend = git_backend

    def resolve(self, org: str, name: str, version: str) -> SourceReference:
        """Find the source of ``name`` at ``version``.

        Raises:
            SourceNotFoundError: When no backend knows the cookbook version.
            BackendError: When a backend cannot be queried.
        """
        source = self._search_community(name, version)
        if source is None:
            source = self._search_private(org, name, version)
        if source is None:
            raise SourceNotFoundError(f"Failed to locate the source of the {name} cookbook!")
        logger.info("Source of %s %s: %s", name, version, source.location_type)
        return source

    def _search_community(self, name: str, version: str) -> Optional[SourceReference]:
        source, known = self._search_supermarket(self._community, name, version)
        if source is not None:
            source.private = False
            return source
        if not known:
            return None

        forks = self._config.community.forks
        if forks:
            source = self.search_git([forks], name, version, tags_only=True)
            if source is not None:
                source.private = False
                return source
        raise SourceNotFoundError(UNKNOWN_COMMUNITY_VERSION.format(name=name, version=version))

    def _search_private(self, org: str, name: str, version: str) -> Optional[SourceReference]:
        if self._private is not None:
            source, _ = self._search_supermarket(self._private, name, version)
            if source is not None:
                source.private = True
                return source

        if self._config.effective(OptionKey.SEARCH_GIT, org):
            orgs = self._config.effective_list(OptionKey.GIT_COOKBOOK_ORGS, org)
            source = self.search_git(orgs, name, version, tags_only=False)
            if source is not None:
                source.private = True
                return source
        return None

    def _search_supermarket(self, client, name: str, version: str):
        descriptor, known = client.lookup(name, version)
        if descriptor is None:
            return None, known
        location_path = descriptor.get("location_path") or client.base_url
        return SourceReference(
            location_type=descriptor.get("location_type") or LOCATION_SUPERMARKET,
            download_url=client.artifact_download_url(location_path, name, version),
            artifact=True,
            location_path=location_path,
        ), True

    def search_git(self, orgs: Iterable[str], name: str, version: str,
                   tags_only: bool) -> Optional[SourceReference]:
        """Search ``orgs`` in order for a repository named ``name``.

        The tag ``v<version>`` is preferred; without it the default branch is
        used unless ``tags_only`` is set.
        """
        tag = f"v{version}"
        for owner in orgs:
            owner = owner.strip()
            if not owner:
                continue
            backend = self._git_backend(owner)
            tagged = backend.tag_exists(name, tag)
            if tags_only and not tagged:
                continue
            link = backend.get_archive_link(name, tag if tagged else Constants.DEFAULT_BRANCH)
            if link:
                return SourceReference(
                    location_type=backend.kind,
                    download_url=link,
                    artifact=False,
                    tagged=tagged,
                    git_org=owner,
                )
        return None
