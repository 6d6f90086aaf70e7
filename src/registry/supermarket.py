"""Supermarket registry client: universe lookups, artifact links and publishing."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

import requests

from constants import Constants
from common.errors import BackendError
from common.http_client import new_session, response_error, safe_get, safe_post

logger = logging.getLogger(__name__)

HEADERS_JSON = {"Accept": "application/json"}


class SupermarketClient:
    """Client for a public or organization-private Supermarket.

    Publishing needs a ``signer``; lookups are anonymous.
    """

    def __init__(self, base_url: str, ssl_no_verify: bool = False, signer=None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self._signer = signer
        self._session = session or new_session(ssl_no_verify)

    def universe(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Return ``{name: {version: descriptor}}`` for every known cookbook.

        Raises:
            BackendError: When the universe cannot be fetched or parsed.
        """
        url = f"{self.base_url}/universe"
        res = safe_get(url, context="supermarket", session=self._session, headers=HEADERS_JSON)
        if res.status_code != 200:
            raise BackendError(f"Failed to get cookbook list from {url}: {response_error(res)}")
        try:
            data = res.json()
        except ValueError as exc:
            raise BackendError(f"Failed to parse cookbook list from {url}: {exc}") from exc
        if not isinstance(data, dict):
            raise BackendError(f"Unexpected cookbook list format from {url}")
        return data

    def lookup(self, name: str, version: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Look up an exact version in the universe.

        Returns:
            Tuple of (descriptor or None, name_known). ``name_known`` is True
            when the cookbook exists even if the version does not.
        """
        versions = self.universe().get(name)
        if versions is None:
            return None, False
        return versions.get(version), True

    def artifact_download_url(self, location_path: str, name: str, version: str) -> str:
        """Resolve the tarball URL of a cookbook version.

        Supermarket version URLs use underscores instead of dots.
        """
        url = f"{location_path.rstrip('/')}/cookbooks/{name}/versions/{version.replace('.', '_')}"
        res = safe_get(url, context="supermarket", session=self._session, headers=HEADERS_JSON)
        if res.status_code != 200:
            raise BackendError(f"Failed to get cookbook info from {url}: {response_error(res)}")
        try:
            link = res.json().get("file")
        except (ValueError, AttributeError) as exc:
            raise BackendError(f"Failed to parse cookbook info from {url}: {exc}") from exc
        if not link:
            raise BackendError(f"No download link found in cookbook info from {url}")
        return link

    def publish(self, name: str, tarball: bytes) -> None:
        """Upload a cookbook tarball with the default category.

        Raises:
            BackendError: When the upload is not accepted with a 201.
        """
        if self._signer is None:
            raise BackendError(f"Failed to upload {name} to the Supermarket: no credentials configured")
        url = f"{self.base_url}/api/v1/cookbooks"
        prepared = requests.Request(
            "POST",
            url,
            files={
                "tarball": (f"{name}.tgz", tarball, "application/x-gzip"),
                "cookbook": (None, Constants.PUBLISH_CATEGORY),
            },
        ).prepare()
        headers = {"Content-Type": prepared.headers["Content-Type"], **HEADERS_JSON}
        headers.update(self._signer.sign("POST", urlsplit(url).path, prepared.body))
        res = safe_post(url, context="supermarket", session=self._session,
                        headers=headers, data=prepared.body)
        if res.status_code != 201:
            raise BackendError(f"Failed to upload {name} to the Supermarket: {response_error(res)}")
        logger.info("Published cookbook %s to %s", name, self.base_url)
