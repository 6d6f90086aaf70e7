"""Tests for request signing, the Chef API client and file storage."""

import base64
import hashlib
from datetime import datetime, timezone
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from chef.auth import RequestSigner, canonical_request, signer_for
from chef.client import ChefClient
from chef.storage import StorageBackend, signed_bookshelf_url
from common.errors import BackendError
from registry.supermarket import SupermarketClient


@pytest.fixture(scope="module")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def response(status=200, json_data=None, text="", content=b""):
    res = MagicMock()
    res.status_code = status
    res.json.return_value = json_data
    res.text = text
    res.content = content
    return res


def session_with(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return session


class TestRequestSigner:
    """Authentication protocol 1.3."""

    def test_signature_verifies(self, private_key):
        signer = RequestSigner("chefgate", private_key)
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        headers = signer.sign("get", "/organizations/acme/cookbooks", b"", now=now)

        assert headers["X-Ops-Timestamp"] == "2024-01-02T03:04:05Z"
        assert headers["X-Ops-Userid"] == "chefgate"
        assert headers["X-Ops-Sign"] == "algorithm=sha256;version=1.3"
        assert headers["X-Ops-Content-Hash"] == base64.b64encode(hashlib.sha256(b"").digest()).decode()

        parts = sorted((k for k in headers if k.startswith("X-Ops-Authorization-")),
                       key=lambda k: int(k.rsplit("-", 1)[1]))
        assert all(len(headers[k]) <= 60 for k in parts)
        signature = base64.b64decode("".join(headers[k] for k in parts))
        expected = canonical_request("GET", "/organizations/acme/cookbooks",
                                     headers["X-Ops-Content-Hash"], "2024-01-02T03:04:05Z", "chefgate")
        private_key.public_key().verify(signature, expected.encode(), padding.PKCS1v15(), hashes.SHA256())

    def test_signer_for_reads_key_file(self, private_key, tmp_path):
        path = tmp_path / "client.pem"
        path.write_bytes(private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.TraditionalOpenSSL,
            serialization.NoEncryption(),
        ))
        signer_for.cache_clear()
        signer = signer_for("chefgate", str(path))
        assert signer is signer_for("chefgate", str(path))
        assert signer.user_id == "chefgate"

    def test_missing_key_file(self, tmp_path):
        with pytest.raises(OSError):
            signer_for("chefgate", str(tmp_path / "missing.pem"))


class TestChefClient:
    """Signed Chef API calls."""

    def test_urls_include_organization(self, private_key):
        session = session_with(response(json_data={"frozen?": True}))
        client = ChefClient("https://chef.local/", RequestSigner("u", private_key), "acme", session=session)
        assert client.is_frozen("foo", "1.0.0") is True
        method, url = session.request.call_args[0]
        assert url == "https://chef.local/organizations/acme/cookbooks/foo/1.0.0"
        assert "X-Ops-Authorization-1" in session.request.call_args[1]["headers"]

    def test_unknown_version_is_not_frozen(self, private_key):
        session = session_with(response(status=404))
        client = ChefClient("https://chef.local", RequestSigner("u", private_key), session=session)
        assert client.is_frozen("foo", "9.9.9") is False
        assert session.request.call_args[0][1] == "https://chef.local/cookbooks/foo/9.9.9"

    def test_lookup_failure(self, private_key):
        session = session_with(response(status=500, text='{"error": ["boom"]}'))
        client = ChefClient("https://chef.local", RequestSigner("u", private_key), session=session)
        with pytest.raises(BackendError, match="Failed to get info for cookbook foo version 1.0.0"):
            client.is_frozen("foo", "1.0.0")

    def test_organization_id(self, private_key):
        probe = "00000000000000000000000000000000"
        url = f"https://chef.local/bookshelf/organization-0a1b2c/checksum-{probe}?sig"
        session = session_with(response(status=201, json_data={"checksums": {probe: {"url": url}}}))
        client = ChefClient("https://chef.local", RequestSigner("u", private_key), "acme", session=session)
        assert client.organization_id() == "0a1b2c"

    def test_organization_id_missing(self, private_key):
        session = session_with(response(status=201, json_data={"checksums": {}}))
        client = ChefClient("https://chef.local", RequestSigner("u", private_key), "acme", session=session)
        with pytest.raises(BackendError, match="Could not find an organization ID"):
            client.organization_id()


class TestStorageBackend:
    """goiardi file store and bookshelf."""

    def test_goiardi_file_store(self):
        session = session_with(response(content=b"data"))
        storage = StorageBackend("http://goiardi:4545", server_type="goiardi", session=session)
        assert storage.needs_organization_id is False
        assert storage.fetch_file_content("abc") == b"data"
        assert session.request.call_args[0][1] == "http://goiardi:4545/file_store/abc"

    def test_bookshelf_requires_org_id(self):
        storage = StorageBackend("https://chef.local", session=MagicMock())
        with pytest.raises(BackendError, match="organization ID is required"):
            storage.fetch_file_content("abc")

    def test_signed_bookshelf_url(self):
        url = signed_bookshelf_url("https://chef.local/", "org1", "abc", "key", "secret", expires=100)
        parts = urlsplit(url)
        assert parts.path == "/bookshelf/organization-org1/checksum-abc"
        query = parse_qs(parts.query)
        assert query["AWSAccessKeyId"] == ["key"]
        assert query["Expires"] == ["100"]
        assert query["Signature"]

    def test_fetch_failure(self):
        session = session_with(response(status=403, text="denied"))
        storage = StorageBackend("https://chef.local", access_key="k", secret="s", session=session)
        with pytest.raises(BackendError, match="denied"):
            storage.fetch_file_content("abc", "org1")


class TestSupermarketClient:
    """Universe lookups, download links and publishing."""

    def test_lookup(self):
        universe = {"apache": {"1.0.0": {"location_type": "opscode"}}}
        session = MagicMock()
        session.request.return_value = response(json_data=universe)
        client = SupermarketClient("https://sm.local/", session=session)
        assert client.lookup("apache", "1.0.0") == ({"location_type": "opscode"}, True)
        assert client.lookup("apache", "2.0.0") == (None, True)
        assert client.lookup("nginx", "1.0.0") == (None, False)

    def test_artifact_download_url(self):
        session = session_with(response(json_data={"file": "https://sm.local/apache-1.0.0.tgz"}))
        client = SupermarketClient("https://sm.local", session=session)
        assert client.artifact_download_url("https://sm.local/api/v1", "apache", "1.0.0") == \
            "https://sm.local/apache-1.0.0.tgz"
        assert session.request.call_args[0][1] == "https://sm.local/api/v1/cookbooks/apache/versions/1_0_0"

    def test_publish_without_credentials(self):
        client = SupermarketClient("https://sm.local", session=MagicMock())
        with pytest.raises(BackendError, match="no credentials configured"):
            client.publish("foo", b"tarball")

    def test_publish(self, private_key):
        session = session_with(response(status=201))
        client = SupermarketClient("https://sm.local", signer=RequestSigner("u", private_key), session=session)
        client.publish("foo", b"tarball")
        method, url = session.request.call_args[0]
        assert (method, url) == ("POST", "https://sm.local/api/v1/cookbooks")
        headers = session.request.call_args[1]["headers"]
        assert headers["Content-Type"].startswith("multipart/form-data")
        assert b"tarball" in session.request.call_args[1]["data"]
