"""Common interface of the git hosting backends.

Callers only use ``GitBackend``; ``new_git_backend`` picks GitHub or GitLab
from the ``type`` of the organization's git configuration.
"""
from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Mapping, Optional, Tuple

import requests

from common.errors import BackendError, InvalidTokenError
from common.http_client import new_session, response_error, safe_request

logger = logging.getLogger(__name__)


@dataclass
class GitUser:
    """Author of a change."""

    name: str
    mail: str


@dataclass
class GitFile:
    """A file (or directory entry) in a repository."""

    path: str
    sha: str
    content: str = ""


def format_diff(sha: str, user: str, diff: str, now: Optional[datetime] = None) -> str:
    """Prefix a textual diff with commit, date and user lines."""
    if not diff:
        return ""
    now = now or datetime.now()
    stamp = f"{now:%a %b} {now.day} {now.hour % 12 or 12}:{now:%M %Y}"
    return f"Commit : {sha}\nDate   : {stamp}\nUser   : {user}\n<br />{diff}"


def directory_commit_message(template: str, path: str) -> str:
    """Fill a ``%s`` commit message template with the item name of ``path``.

    Data bag items live under ``data_bags/<bag>/<item>.json`` and are named
    ``<bag>/<item>``.
    """
    name = path[len("data_bags/"):] if path.startswith("data_bags/") else path
    if name.endswith(".json"):
        name = name[: -len(".json")]
    return template % name


class GitBackend(abc.ABC):
    """Repository operations used for audit commits, source search and tagging.

    Every backend is bound to one organization (GitHub) or group (GitLab).
    A rejected token raises ``InvalidTokenError``; any other failure raises
    ``BackendError``.
    """

    invalid_token_message = "The token configured for {} is not valid!"

    def __init__(self, owner: str, token: str, base_url: str, ssl_no_verify: bool = False,
                 session: Optional[requests.Session] = None):
        self.owner = owner
        self.token = token
        self.base_url = base_url.rstrip("/")
        self._session = session or new_session(ssl_no_verify)

    def _headers(self) -> dict:
        return {}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))
        res = safe_request(method, url, context=self.kind, session=self._session,
                           headers=headers, **kwargs)
        if res.status_code == 401:
            raise InvalidTokenError(self.invalid_token_message.format(self.owner))
        return res

    def _fail(self, what: str, res: requests.Response) -> BackendError:
        return BackendError(f"{what}: {response_error(res)}")

    @property
    @abc.abstractmethod
    def kind(self) -> str:
        """Backend type name (``github`` or ``gitlab``)."""

    @abc.abstractmethod
    def get_content(self, repo: str, path: str) -> Tuple[Optional[GitFile], Optional[List[GitFile]]]:
        """Return (file, None), (None, directory entries) or (None, None) when absent."""

    @abc.abstractmethod
    def create_file(self, repo: str, path: str, message: str, user: GitUser, content: bytes) -> str:
        """Create a file on the default branch and return the commit sha."""

    @abc.abstractmethod
    def update_file(self, repo: str, path: str, sha: str, message: str, user: GitUser,
                    content: bytes) -> str:
        """Replace a file's content and return the commit sha."""

    @abc.abstractmethod
    def delete_file(self, repo: str, path: str, sha: str, message: str, user: GitUser) -> str:
        """Delete a file and return the commit sha."""

    def delete_directory(self, repo: str, message: str, entries: List[GitFile], user: GitUser) -> None:
        """Delete every entry of a directory listing, one commit per file.

        ``message`` is a template with one ``%s`` for the item name.
        """
        for entry in entries:
            self.delete_file(repo, entry.path, entry.sha,
                             directory_commit_message(message, entry.path), user)

    @abc.abstractmethod
    def get_diff(self, repo: str, user: str, sha: str) -> str:
        """Return the formatted diff of a commit, or "" when it is empty."""

    @abc.abstractmethod
    def get_archive_link(self, repo: str, ref: str) -> Optional[str]:
        """Return a tarball URL for ``ref``, or None when the repo does not exist."""

    @abc.abstractmethod
    def tag_exists(self, repo: str, tag: str) -> bool:
        """True when ``tag`` exists; a missing repository counts as no tag."""

    @abc.abstractmethod
    def create_tag(self, repo: str, tag: str, user: GitUser) -> None:
        """Create an annotated tag on the tip of the default branch."""

    @abc.abstractmethod
    def delete_tag(self, repo: str, tag: str) -> None:
        """Remove ``tag``."""


def new_git_backend(owner: str, settings) -> GitBackend:
    """Create the backend matching ``settings.type``.

    Raises:
        BackendError: For unknown backend types.
    """
    # Imported here to avoid a cycle: the backends subclass GitBackend.
    from .github import GitHubBackend
    from .gitlab import GitLabBackend

    backends = {"github": GitHubBackend, "gitlab": GitLabBackend}
    cls = backends.get(settings.type)
    if cls is None:
        raise BackendError(f'Unknown Git type: "{settings.type}"')
    return cls(owner, settings.token, settings.server_url or None,
               ssl_no_verify=settings.ssl_no_verify)


def backend_for(git_config: Mapping[str, object], owner: str) -> GitBackend:
    """Create the backend configured for ``owner``."""
    settings = git_config.get(owner)
    if settings is None:
        raise BackendError(f"No Git config specified for organization: {owner}!")
    return new_git_backend(owner, settings)
