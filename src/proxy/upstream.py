"""Upstream client for forwarding requests to the Chef server (erchef)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

import aiohttp

from common.logging_utils import safe_url

logger = logging.getLogger(__name__)

HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})


def _connection_tokens(headers: Dict[str, str]) -> set:
    for key, value in headers.items():
        if key.lower() == "connection":
            return {token.strip().lower() for token in value.split(",") if token.strip()}
    return set()


class UpstreamClient:
    """Client for forwarding requests to the erchef API endpoint.

    Requests are sent to a single upstream base URL, redirects are handed
    back to the client untouched and bodies are passed through without
    decompression.
    """

    def __init__(self, upstream: str, timeout: int = 60):
        """Initialize the upstream client.

        Args:
            upstream: Base URL of the erchef API, e.g. ``http://127.0.0.1:8000``.
            timeout: Request timeout in seconds.
        """
        self._upstream = upstream.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def upstream(self) -> str:
        return self._upstream

    def set_upstream(self, url: str) -> None:
        """Point the client at another erchef endpoint (used on reload)."""
        self._upstream = url.rstrip("/")

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=100)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                auto_decompress=False,
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def build_url(self, path_qs: str) -> str:
        """Build the upstream URL from a path with optional query string."""
        request_path = path_qs if path_qs.startswith("/") else f"/{path_qs}"
        return f"{self._upstream}{request_path}"

    async def forward(
        self,
        path_qs: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[bytes] = None,
    ) -> Tuple[int, Dict[str, str], bytes]:
        """Send a request upstream and read the full response.

        Args:
            path_qs: Request path including the query string.
            method: HTTP method.
            headers: Client request headers.
            body: Request body.

        Returns:
            Tuple of status, filtered response headers and body.

        Raises:
            aiohttp.ClientError: When erchef cannot be reached.
        """
        if self._session is None:
            await self.start()
        assert self._session is not None
        url = self.build_url(path_qs)
        async with self._session.request(
            method,
            url,
            headers=self.build_request_headers(headers),
            data=body,
            allow_redirects=False,
        ) as response:
            payload = await response.read()
            logger.debug("%s %s -> %s", method, safe_url(url), response.status)
            return response.status, self.filter_response_headers(response.headers), payload

    def build_request_headers(
        self, headers: Optional[Dict[str, str]]
    ) -> Dict[str, str]:
        """Build request headers to send upstream.

        Hop-by-hop headers and those named in ``Connection`` are dropped.
        ``Host`` is kept so erchef builds URLs for the name clients use.
        """
        request_headers: Dict[str, str] = {}
        headers = headers or {}
        connection_tokens = _connection_tokens(headers)

        for key, value in headers.items():
            key_lower = key.lower()
            if key_lower in HOP_BY_HOP or key_lower in connection_tokens:
                continue
            request_headers[key] = value

        request_headers.setdefault("User-Agent", "chefgate-proxy/1.0")
        request_headers.setdefault("Accept", "*/*")
        return request_headers

    def filter_response_headers(self, headers: Any) -> Dict[str, str]:
        """Filter response headers to forward to the client.

        Everything but hop-by-hop headers and ``Content-Length`` is kept; the
        length is recomputed for the body actually returned.
        """
        filtered: Dict[str, str] = {}
        for key, value in headers.items():
            key_lower = key.lower()
            if key_lower in HOP_BY_HOP or key_lower == "content-length":
                continue
            filtered[key] = str(value)
        return filtered

    async def __aenter__(self) -> "UpstreamClient":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
