"""GitLab REST backend.

Implements the repository operations of ``GitBackend`` for projects that
live in a single GitLab group.
"""
from __future__ import annotations

import base64
import posixpath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from constants import Constants
from common.errors import BackendError

from .base import GitBackend, GitFile, GitUser, format_diff


class GitLabBackend(GitBackend):
    """REST client for the projects of one GitLab group.

    Authenticates with a personal access token sent as ``Private-Token``.
    """

    invalid_token_message = "The token configured for GitLab group {} is not valid!"

    def __init__(self, owner: str, token: str, base_url: Optional[str] = None, **kwargs):
        """Initialize GitLab backend.

        Args:
            owner: GitLab group holding the projects
            token: GitLab personal access token
            base_url: Base URL for GitLab API (defaults to Constants.GITLAB_API_BASE)
        """
        super().__init__(owner, token, base_url or Constants.GITLAB_API_BASE, **kwargs)

    @property
    def kind(self) -> str:
        return "gitlab"

    def _headers(self) -> Dict[str, str]:
        """Get request headers including the private token."""
        return {"Private-Token": self.token}

    def _project(self, repo: str) -> str:
        """URL-encoded ``group/project`` path."""
        return quote(f"{self.owner}/{repo}", safe='')

    def _project_url(self, repo: str, suffix: str = "") -> str:
        url = f"{self.base_url}/projects/{self._project(repo)}"
        return f"{url}/{suffix}" if suffix else url

    def _file_url(self, repo: str, path: str) -> str:
        return self._project_url(repo, f"repository/files/{quote(path, safe='')}")

    @property
    def web_url(self) -> str:
        """Web (non-API) root of the GitLab server."""
        for suffix in ("/api/v4", "/api/v3"):
            if self.base_url.endswith(suffix):
                return self.base_url[: -len(suffix)]
        return self.base_url

    def get_content(self, repo: str, path: str) -> Tuple[Optional[GitFile], Optional[List[GitFile]]]:
        """Fetch a directory listing or a file.

        Args:
            repo: Project name
            path: Path inside the repository

        Returns:
            (None, entries) for a directory, (file, None) for a file and
            (None, None) when nothing exists at ``path``
        """
        tree = self._get_paginated_results(
            self._project_url(repo, "repository/tree"),
            {"path": path, "ref": Constants.DEFAULT_BRANCH},
            f"Error retrieving tree for {path}",
        )
        if tree:
            return None, [
                GitFile(path=posixpath.join(path, item["name"]), sha=item.get("id", ""))
                for item in tree
            ]

        res = self._request("GET", self._file_url(repo, path),
                            params={"ref": Constants.DEFAULT_BRANCH})
        if res.status_code == 404:
            return None, None
        if res.status_code != 200:
            raise self._fail(f"Error retrieving file {path}", res)

        data = res.json()
        content = data.get("content", "")
        if data.get("encoding") == "base64":
            try:
                content = base64.b64decode(content).decode("utf-8")
            except (ValueError, UnicodeDecodeError) as exc:
                raise BackendError(f"Error decoding file {path}, {exc}") from exc
        return GitFile(path=path, sha=data.get("commit_id", ""), content=content), None

    def _commit_payload(self, message: str, user: GitUser,
                        content: Optional[bytes] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "branch": Constants.DEFAULT_BRANCH,
            "author_email": user.mail,
            "author_name": user.name,
            "commit_message": message,
        }
        if content is not None:
            payload["content"] = content.decode("utf-8")
        return payload

    def create_file(self, repo, path, message, user, content) -> str:
        res = self._request("POST", self._file_url(repo, path),
                            json=self._commit_payload(message, user, content))
        if res.status_code != 201:
            raise self._fail(f"Error creating file {path}", res)
        return self._sha_of_latest_commit(repo)

    def update_file(self, repo, path, sha, message, user, content) -> str:
        res = self._request("PUT", self._file_url(repo, path),
                            json=self._commit_payload(message, user, content))
        if res.status_code != 200:
            raise self._fail(f"Error updating file {path}", res)
        return self._sha_of_latest_commit(repo)

    def delete_file(self, repo, path, sha, message, user) -> str:
        res = self._request("DELETE", self._file_url(repo, path),
                            json=self._commit_payload(message, user))
        if res.status_code not in (200, 204):
            raise self._fail(f"Error deleting file {path}", res)
        return self._sha_of_latest_commit(repo)

    def get_diff(self, repo: str, user: str, sha: str) -> str:
        """Fetch the plain diff of a commit from the web (not API) URL."""
        res = self._request("GET", f"{self.web_url}/{self.owner}/{repo}/commit/{sha}.diff")
        if res.status_code != 200:
            raise self._fail(f"Error retrieving commit {sha}", res)
        return format_diff(sha, user, res.text)

    def get_archive_link(self, repo: str, ref: str) -> Optional[str]:
        res = self._request("GET", self._project_url(repo))
        if res.status_code == 404:
            return None
        if res.status_code != 200:
            raise self._fail(f"Error retrieving archive link of project {repo}", res)
        return (
            f"{self._project_url(repo, 'repository/archive.tar.gz')}"
            f"?ref={quote(ref, safe='')}&private_token={self.token}"
        )

    def tag_exists(self, repo: str, tag: str) -> bool:
        res = self._request("GET", self._project_url(repo, f"repository/tags/{quote(tag, safe='')}"))
        if res.status_code == 404:
            return False
        if res.status_code != 200:
            raise self._fail(f"Error retrieving tags of project {repo}", res)
        return True

    def create_tag(self, repo: str, tag: str, user: GitUser) -> None:
        res = self._request("POST", self._project_url(repo, "repository/tags"), json={
            "tag_name": tag,
            "ref": Constants.DEFAULT_BRANCH,
            "message": Constants.TAG_MESSAGE,
        })
        if res.status_code != 201:
            raise self._fail(f"Error creating tag for project {repo}", res)

    def delete_tag(self, repo: str, tag: str) -> None:
        res = self._request("DELETE", self._project_url(repo, f"repository/tags/{quote(tag, safe='')}"))
        if res.status_code not in (200, 204):
            raise self._fail(f"Error deleting tag {tag}", res)

    def _sha_of_latest_commit(self, repo: str) -> str:
        res = self._request("GET", self._project_url(repo, f"repository/commits/{Constants.DEFAULT_BRANCH}"))
        if res.status_code != 200:
            raise self._fail("Error retrieving SHA of latest commit", res)
        return res.json()["id"]

    def _get_paginated_results(self, url: str, params: Dict[str, Any], what: str) -> List[Dict[str, Any]]:
        """Fetch all pages of a paginated endpoint.

        Args:
            url: Base URL for paginated endpoint
            params: Query parameters sent with every page
            what: Error message prefix

        Returns:
            List of all results across pages; empty when the endpoint is a 404
        """
        results: List[Dict[str, Any]] = []
        page: Optional[int] = 1

        while page:
            query = dict(params, per_page=Constants.REPO_API_PER_PAGE, page=page)
            res = self._request("GET", url, params=query)
            if res.status_code == 404:
                break
            if res.status_code != 200:
                raise self._fail(what, res)

            data = res.json()
            if not data:
                break
            results.extend(data)

            # Check for next page
            current_page = self._get_current_page(res.headers)
            total_pages = self._get_total_pages(res.headers)
            if current_page and total_pages and current_page < total_pages:
                page = current_page + 1
            else:
                page = None

        return results

    def _get_current_page(self, headers) -> Optional[int]:
        """Extract current page from response headers."""
        page_str = headers.get('x-page')
        if page_str:
            try:
                return int(page_str)
            except ValueError:
                pass
        return None

    def _get_total_pages(self, headers) -> Optional[int]:
        """Extract total pages from response headers."""
        total_str = headers.get('x-total-pages')
        if total_str:
            try:
                return int(total_str)
            except ValueError:
                pass
        return None
