"""Chef server API client used by the upload gate."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

import requests

from constants import Constants
from common.errors import BackendError
from common.http_client import check_response, new_session, response_error, safe_request

from .auth import RequestSigner

logger = logging.getLogger(__name__)

_ORG_ID_PATTERN = re.compile(r"^.*/organization-(.*)/checksum-.*$")


class ChefClient:
    """Signed client for a single Chef organization (or the whole server)."""

    def __init__(
        self,
        base_url: str,
        signer: RequestSigner,
        organization: str = "",
        ssl_no_verify: bool = False,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server base URL, e.g. ``https://chef.example.com``.
            signer: Signs every request with the client key.
            organization: Organization name; empty for servers without orgs.
            ssl_no_verify: Skip TLS certificate verification.
            session: Optional pre-built session (tests inject one).
        """
        self.base_url = base_url.rstrip("/")
        self.organization = organization
        self._signer = signer
        self._session = session or new_session(ssl_no_verify)

    def _url(self, endpoint: str) -> str:
        endpoint = endpoint.lstrip("/")
        if self.organization:
            return f"{self.base_url}/organizations/{self.organization}/{endpoint}"
        return f"{self.base_url}/{endpoint}"

    def request(self, method: str, endpoint: str, body: Optional[Any] = None) -> requests.Response:
        """Send a signed request to ``endpoint`` (relative to the organization)."""
        url = self._url(endpoint)
        data = b""
        if body is not None:
            data = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Chef-Version": "12.0.0",
        }
        headers.update(self._signer.sign(method, urlsplit(url).path, data))
        return safe_request(method, url, context="chef", session=self._session,
                            headers=headers, data=data or None)

    def get_cookbook_version(self, name: str, version: str) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Fetch a cookbook version manifest.

        Returns:
            Tuple of (manifest, found); ``found`` is False on a 404.

        Raises:
            BackendError: On any other failure.
        """
        res = self.request("GET", f"cookbooks/{name}/{version}")
        if res.status_code == 404:
            return None, False
        if res.status_code != 200:
            raise BackendError(
                f"Failed to get info for cookbook {name} version {version}: {response_error(res)}"
            )
        try:
            return res.json(), True
        except ValueError as exc:
            raise BackendError(
                f"Failed to get info for cookbook {name} version {version}: {exc}"
            ) from exc

    def is_frozen(self, name: str, version: str) -> bool:
        """True when ``name`` at ``version`` exists on the server and is frozen."""
        manifest, found = self.get_cookbook_version(name, version)
        if not found:
            return False
        return bool((manifest or {}).get("frozen?", False))

    def create_sandbox(self, checksums) -> Dict[str, Any]:
        """Create an upload sandbox for ``checksums`` and return the reply."""
        res = self.request("POST", "sandboxes", {"checksums": {c: None for c in checksums}})
        check_response(res, (200, 201))
        try:
            return res.json()
        except ValueError as exc:
            raise BackendError(f"Failed to parse sandbox reply: {exc}") from exc

    def organization_id(self) -> str:
        """Derive the internal organization id from a probe sandbox.

        Bookshelf stores files under ``organization-<id>/checksum-<sum>``; the
        URL handed out for a sandbox checksum reveals that id.
        """
        probe = Constants.SANDBOX_PROBE_CHECKSUM
        sandbox = self.create_sandbox([probe])
        url = ((sandbox.get("checksums") or {}).get(probe) or {}).get("url", "")
        match = _ORG_ID_PATTERN.match(url)
        if match:
            return match.group(1)
        raise BackendError(f"Could not find an organization ID in reply: {json.dumps(sandbox)}")
