"""Access to cookbook file contents in the Chef storage backend."""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Optional
from urllib.parse import quote

import requests

from constants import Constants
from common.errors import BackendError
from common.http_client import new_session, response_error, safe_get


def signed_bookshelf_url(base_url: str, org_id: str, checksum: str, access_key: str,
                         secret: str, expires: Optional[int] = None) -> str:
    """Build a pre-signed (S3 style) bookshelf URL for one checksum."""
    if expires is None:
        expires = int(time.time()) + Constants.BOOKSHELF_URL_TTL_SEC
    string_to_sign = f"GET\n\n\n{expires}\n/bookshelf/organization-{org_id}/checksum-{checksum}"
    digest = hmac.new(secret.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1).digest()
    signature = quote(base64.b64encode(digest).decode("ascii"), safe="")
    return (
        f"{base_url.rstrip('/')}/bookshelf/organization-{org_id}/checksum-{checksum}"
        f"?AWSAccessKeyId={access_key}&Expires={expires}&Signature={signature}"
    )


class StorageBackend:
    """Fetches file contents by checksum.

    goiardi serves files from ``<base>/file_store/<checksum>``; every other
    server type keeps them in bookshelf behind signed URLs, which need the
    organization id (see ``ChefClient.organization_id``).
    """

    def __init__(self, base_url: str, server_type: str = "enterprise", access_key: str = "",
                 secret: str = "", ssl_no_verify: bool = False,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.server_type = server_type
        self._access_key = access_key
        self._secret = secret
        self._session = session or new_session(ssl_no_verify)

    @property
    def needs_organization_id(self) -> bool:
        return self.server_type != "goiardi"

    def file_url(self, checksum: str, org_id: Optional[str] = None) -> str:
        if not self.needs_organization_id:
            return f"{self.base_url}/file_store/{checksum}"
        if not org_id:
            raise BackendError("An organization ID is required to fetch files from bookshelf")
        return signed_bookshelf_url(self.base_url, org_id, checksum, self._access_key, self._secret)

    def fetch_file_content(self, checksum: str, org_id: Optional[str] = None) -> bytes:
        """Return the raw content stored under ``checksum``.

        Raises:
            BackendError: On transport failures and non-200 replies.
        """
        res = safe_get(self.file_url(checksum, org_id), context="storage", session=self._session)
        if res.status_code != 200:
            raise BackendError(response_error(res))
        return res.content
