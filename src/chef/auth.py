"""Chef request signing (authentication protocol version 1.3).

Requests to the Chef server and to a private Supermarket are authenticated by
signing a canonical description of the request with the client's RSA key and
sending the signature split across ``X-Ops-Authorization-N`` headers.
"""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Optional

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

SIGN_VERSION = "1.3"
SERVER_API_VERSION = "1"
AUTH_HEADER_WIDTH = 60


def load_private_key(path: str):
    """Load an unencrypted PEM private key from ``path``."""
    with open(path, "rb") as f:
        return serialization.load_pem_private_key(f.read(), password=None)


def _digest(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def canonical_request(
    method: str,
    path: str,
    content_hash: str,
    timestamp: str,
    user_id: str,
    server_api_version: str = SERVER_API_VERSION,
) -> str:
    """The string that gets signed for a request."""
    return "\n".join(
        [
            f"Method:{method.upper()}",
            f"Path:{path}",
            f"X-Ops-Content-Hash:{content_hash}",
            f"X-Ops-Sign:version={SIGN_VERSION}",
            f"X-Ops-Timestamp:{timestamp}",
            f"X-Ops-UserId:{user_id}",
            f"X-Ops-Server-API-Version:{server_api_version}",
        ]
    )


class RequestSigner:
    """Produces authentication headers for one client identity."""

    def __init__(self, user_id: str, private_key, server_api_version: str = SERVER_API_VERSION):
        self.user_id = user_id
        self._key = private_key
        self._api_version = server_api_version

    @classmethod
    def from_key_file(cls, user_id: str, key_path: str) -> "RequestSigner":
        return cls(user_id, load_private_key(key_path))

    def sign(self, method: str, path: str, body: bytes = b"",
             now: Optional[datetime] = None) -> Dict[str, str]:
        """Return the headers authenticating ``method`` on ``path`` with ``body``."""
        now = now or datetime.now(timezone.utc)
        timestamp = now.strftime("%Y-%m-%dT%H:%M:%SZ")
        content_hash = _digest(body or b"")
        to_sign = canonical_request(method, path, content_hash, timestamp,
                                    self.user_id, self._api_version)
        signature = self._key.sign(to_sign.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
        encoded = base64.b64encode(signature).decode("ascii")

        headers = {
            "X-Ops-Sign": f"algorithm=sha256;version={SIGN_VERSION}",
            "X-Ops-Userid": self.user_id,
            "X-Ops-Timestamp": timestamp,
            "X-Ops-Content-Hash": content_hash,
            "X-Ops-Server-API-Version": self._api_version,
        }
        for idx in range(0, len(encoded), AUTH_HEADER_WIDTH):
            headers[f"X-Ops-Authorization-{idx // AUTH_HEADER_WIDTH + 1}"] = encoded[idx:idx + AUTH_HEADER_WIDTH]
        return headers


@lru_cache(maxsize=16)
def signer_for(user_id: str, key_path: str) -> RequestSigner:
    """Cached signer for a client name and key file."""
    return RequestSigner.from_key_file(user_id, key_path)
