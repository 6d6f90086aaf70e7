"""Tagging of git sources and publishing to the private Supermarket."""

from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from common.errors import BackendError
from repository.base import GitUser
from settings import GuardConfig, OptionKey

from .models import CandidatePackage, SourceReference

logger = logging.getLogger(__name__)

UNTAG_FAILED_NOTE = " - NOTE: Failed to untag the repo during cleanup!"


def is_blacklisted(config: GuardConfig, org: str, name: str) -> bool:
    """True when ``name`` matches a default or organization blacklist regex."""
    return any(re.search(rgx, name) for rgx in config.effective_list(OptionKey.BLACKLIST, org))


class Publisher:
    """Side effects of an accepted upload of a git sourced cookbook.

    Args:
        config: Active configuration.
        git_backend: Callable returning the ``GitBackend`` for an organization.
        supermarket: Client for the private Supermarket, if configured.
    """

    def __init__(self, config: GuardConfig, git_backend: Callable[[str], object],
                 supermarket=None):
        self._config = config
        self._git_backend = git_backend
        self._supermarket = supermarket

    def tag_and_publish(self, candidate: CandidatePackage, source: SourceReference) -> Optional[str]:
        """Tag ``v<version>`` if needed and publish the rebuilt archive.

        A tag created here is removed again when publishing fails.

        Returns:
            The tag created, or None when nothing was tagged.

        Raises:
            BackendError: When tagging or publishing fails.
        """
        if source.artifact:
            return None

        org = candidate.organization
        tag = f"v{candidate.version}"
        backend = self._git_backend(source.git_org)
        created = None
        if not source.tagged and not backend.tag_exists(candidate.name, tag):
            mail = f"{candidate.user}@{self._config.effective(OptionKey.MAIL_DOMAIN, org)}"
            backend.create_tag(candidate.name, tag, GitUser(name=candidate.user, mail=mail))
            created = tag
            logger.info("Tagged %s/%s with %s", source.git_org, candidate.name, tag)

        if not (self._config.effective(OptionKey.PUBLISH_COOKBOOK, org) and source.private):
            return created
        if is_blacklisted(self._config, org, candidate.name):
            logger.info("Not publishing blacklisted cookbook %s", candidate.name)
            return created

        try:
            if self._supermarket is None:
                raise BackendError(
                    f"Failed to upload {candidate.name} to the Supermarket: no Supermarket configured"
                )
            self._supermarket.publish(candidate.name, candidate.archive)
        except BackendError as exc:
            message = exc.message
            if created:
                try:
                    backend.delete_tag(candidate.name, tag)
                except BackendError as untag_exc:
                    logger.error("Failed to remove tag %s from %s: %s", tag, candidate.name, untag_exc)
                    message += f"{UNTAG_FAILED_NOTE} ({untag_exc.message})"
            raise BackendError(message) from exc
        return created
