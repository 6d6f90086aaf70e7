"""Audit trail: commits every accepted config change to a git repository.

Each organization has its own repository (``config`` when the Chef server
has no organizations) inside the git organization named by
``default.git_organization``. Commits to one repository are serialized with
a ``KeyedLock`` since every write is a read-sha-then-write sequence.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from common.errors import BackendError, GateError
from common.keyed_lock import KeyedLock
from repository.base import GitBackend, GitUser, backend_for
from settings import GuardConfig, OptionKey

from .changes import ChangeDetails, remarshal_config
from .notify import Mailer, change_subject, create_message

logger = logging.getLogger(__name__)

DEFAULT_REPO = "config"

# Shared by every request handled in this process.
repo_locks = KeyedLock()


def audit_repo(organization: str) -> str:
    """Repository holding the audit trail of ``organization``."""
    return organization or DEFAULT_REPO


class AuditTrail:
    """Writes one change to git and mails the resulting diff.

    Args:
        config: Configuration in effect for the request.
        organization: Chef organization of the change ("" for none).
        user: Chef user making the change.
        backend_factory: Returns the ``GitBackend`` for a git organization.
        mailer_factory: Returns a ``Mailer`` for ``(host, port)``.
        locks: Lock table serializing commits per repository.
    """

    def __init__(
        self,
        config: GuardConfig,
        organization: str,
        user: str,
        backend_factory: Optional[Callable[[str], GitBackend]] = None,
        mailer_factory: Optional[Callable[..., Mailer]] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self._config = config
        self.organization = organization
        self.user = user
        self.repo = audit_repo(organization)
        self._backend_factory = backend_factory or (lambda owner: backend_for(config.git, owner))
        self._mailer_factory = mailer_factory or Mailer
        self._locks = locks if locks is not None else repo_locks
        self._backend: Optional[GitBackend] = None

    @property
    def git_owner(self) -> str:
        return self._config.default.git_organization

    def _git(self) -> GitBackend:
        if self._backend is None:
            try:
                self._backend = self._backend_factory(self.git_owner)
            except BackendError as exc:
                raise BackendError(f"Failed to create Git client: {exc}") from exc
        return self._backend

    def _git_user(self) -> GitUser:
        domain = self._config.effective(OptionKey.MAIL_DOMAIN, self.organization)
        return GitUser(name=self.user, mail=f"{self.user}@{domain}")

    def record(self, method: str, details: ChangeDetails, body: bytes) -> Optional[str]:
        """Commit a change and notify about it.

        Never raises: this runs after the client got its answer, so failures
        can only be logged.

        Returns:
            The commit sha, or None when nothing was committed.
        """
        with self._locks.hold(self.repo):
            try:
                config = remarshal_config(method, body)
            except ValueError as exc:
                logger.error("Failed to convert %s config for %s %s for %s: %s",
                             details.kind, details.kind, details.item_name, self.user, exc)
                return None

            try:
                sha = self.write_config_to_git(method, details, config)
            except GateError as exc:
                logger.error("Failed to update %s %s for %s in git: %s",
                             details.kind, details.item_name, self.user, exc)
                return None

            if sha:
                try:
                    self.mail_changes(details.path, sha, method)
                except (GateError, OSError) as exc:
                    logger.error("Failed to send git spam: %s", exc)
            return sha

    def write_config_to_git(self, method: str, details: ChangeDetails, config: bytes) -> str:
        """Create, update or delete the audit file for ``details``.

        Returns:
            The commit sha, "" when the content is unchanged, or the default
            branch name after deleting a whole directory.

        Raises:
            BackendError: On git failures or deletes of unknown paths.
        """
        backend = self._git()
        user = self._git_user()
        message = f"Config for {details.kind} {details.item_name} %s by chefgate"
        path = details.path
        file, directory = backend.get_content(self.repo, path)
        deleting = method.upper() == "DELETE"

        if file is None and directory is None:
            if deleting:
                raise BackendError(f"Failed to delete non-existing file or directory {path}")
            return backend.create_file(self.repo, path, message % "created", user, config)

        if file is not None:
            if deleting:
                return backend.delete_file(self.repo, path, file.sha, message % "deleted", user)
            if file.content == config.decode("utf-8"):
                return ""
            return backend.update_file(self.repo, path, file.sha, message % "updated", user, config)

        if deleting:
            backend.delete_directory(
                self.repo, f"Config for {details.kind} %s deleted by chefgate", directory, user
            )
            return "master"

        raise BackendError(f"Unknown error while updating file or directory content of {path}")

    def mail_changes(self, path: str, sha: str, method: str) -> None:
        """Mail the diff of ``sha`` when ``mail_changes`` is enabled."""
        org = self.organization
        if not self._config.effective(OptionKey.MAIL_CHANGES, org):
            return
        diff = self._git().get_diff(self.repo, self.user, sha)
        sender = self._config.effective(OptionKey.MAIL_SEND_BY, org) or self._git_user().mail
        recipient = self._config.effective(OptionKey.MAIL_RECIPIENT, org)
        message = create_message(sender, recipient, change_subject(org, method, path), diff)
        mailer = self._mailer_factory(
            self._config.effective(OptionKey.MAIL_SERVER, org),
            self._config.effective(OptionKey.MAIL_PORT, org),
            helo_name=self._config.chef.server,
        )
        mailer.send(sender, recipient, message)
