"""GitHub REST backend."""
from __future__ import annotations

import base64
from typing import List, Optional, Tuple

from constants import Constants
from common.errors import BackendError

from .base import GitBackend, GitFile, GitUser, format_diff


class GitHubBackend(GitBackend):
    """GitHub (or GitHub Enterprise) organization."""

    invalid_token_message = "The token configured for GitHub organization {} is not valid!"

    def __init__(self, owner: str, token: str, base_url: Optional[str] = None, **kwargs):
        super().__init__(owner, token, base_url or Constants.GITHUB_API_BASE, **kwargs)

    @property
    def kind(self) -> str:
        return "github"

    def _headers(self) -> dict:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _repo_url(self, repo: str, suffix: str) -> str:
        return f"{self.base_url}/repos/{self.owner}/{repo}/{suffix}"

    def get_content(self, repo: str, path: str) -> Tuple[Optional[GitFile], Optional[List[GitFile]]]:
        res = self._request("GET", self._repo_url(repo, f"contents/{path}"),
                            params={"ref": Constants.DEFAULT_BRANCH})
        if res.status_code == 404:
            return None, None
        if res.status_code != 200:
            raise self._fail(f"Error retrieving file {path}", res)

        data = res.json()
        if isinstance(data, list):
            return None, [GitFile(path=item["path"], sha=item["sha"]) for item in data]
        try:
            content = base64.b64decode(data.get("content", "")).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise BackendError(f"Error decoding file {path}: {exc}") from exc
        return GitFile(path=data.get("path", path), sha=data["sha"], content=content), None

    def _write(self, method: str, repo: str, path: str, payload: dict, what: str) -> str:
        res = self._request(method, self._repo_url(repo, f"contents/{path}"), json=payload)
        if res.status_code not in (200, 201):
            raise self._fail(f"Error {what} file {path}", res)
        return res.json()["commit"]["sha"]

    def _payload(self, message: str, user: GitUser, content: Optional[bytes] = None,
                 sha: Optional[str] = None) -> dict:
        payload = {
            "message": message,
            "committer": {"name": user.name, "email": user.mail},
            "branch": Constants.DEFAULT_BRANCH,
        }
        if content is not None:
            payload["content"] = base64.b64encode(content).decode("ascii")
        if sha:
            payload["sha"] = sha
        return payload

    def create_file(self, repo, path, message, user, content) -> str:
        return self._write("PUT", repo, path, self._payload(message, user, content), "creating")

    def update_file(self, repo, path, sha, message, user, content) -> str:
        return self._write("PUT", repo, path, self._payload(message, user, content, sha), "updating")

    def delete_file(self, repo, path, sha, message, user) -> str:
        return self._write("DELETE", repo, path, self._payload(message, user, sha=sha), "deleting")

    def get_diff(self, repo: str, user: str, sha: str) -> str:
        res = self._request("GET", self._repo_url(repo, f"commits/{sha}"),
                            headers={"Accept": "application/vnd.github.v3.diff"})
        if res.status_code != 200:
            raise self._fail(f"Error retrieving commit {sha}", res)
        return format_diff(sha, user, res.text)

    def get_archive_link(self, repo: str, ref: str) -> Optional[str]:
        res = self._request("GET", self._repo_url(repo, f"tarball/{ref}"), allow_redirects=False)
        if res.status_code == 404:
            return None
        if res.status_code in (301, 302, 307) and res.headers.get("Location"):
            return res.headers["Location"]
        raise self._fail(f"Error retrieving archive link of repo {repo}", res)

    def tag_exists(self, repo: str, tag: str) -> bool:
        res = self._request("GET", self._repo_url(repo, f"git/ref/tags/{tag}"))
        if res.status_code == 404:
            return False
        if res.status_code != 200:
            raise self._fail(f"Error retrieving tags of repo {repo}", res)
        return True

    def create_tag(self, repo: str, tag: str, user: GitUser) -> None:
        res = self._request("GET", self._repo_url(repo, f"git/ref/heads/{Constants.DEFAULT_BRANCH}"))
        if res.status_code != 200:
            raise self._fail(f"Error retrieving tags of repo {repo}", res)
        head = res.json()["object"]["sha"]

        res = self._request("POST", self._repo_url(repo, "git/tags"), json={
            "tag": tag,
            "message": Constants.TAG_MESSAGE,
            "object": head,
            "type": "commit",
            "tagger": {"name": user.name, "email": user.mail},
        })
        if res.status_code != 201:
            raise self._fail(f"Error creating tag for repo {repo}", res)
        tag_sha = res.json()["sha"]

        res = self._request("POST", self._repo_url(repo, "git/refs"),
                            json={"ref": f"refs/tags/{tag}", "sha": tag_sha})
        if res.status_code != 201:
            raise self._fail(f"Error creating tag for repo {repo}", res)

    def delete_tag(self, repo: str, tag: str) -> None:
        res = self._request("DELETE", self._repo_url(repo, f"git/refs/tags/{tag}"))
        if res.status_code not in (200, 204):
            raise self._fail(f"Error deleting tag {tag}", res)
