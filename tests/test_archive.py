"""Tests for rebuilding an uploaded cookbook from storage."""

import io
import json
import os
import tarfile

import pytest

from common.errors import BackendError, BundleTooLargeError
from cookbook.archive import ArchiveBuilder, md5_hex, metadata_json
from cookbook.models import CandidatePackage, CookbookVersion


class FakeStorage:
    """Storage backend serving contents keyed by checksum."""

    def __init__(self, contents, needs_organization_id=False):
        self.contents = contents
        self.needs_organization_id = needs_organization_id
        self.requests = []

    def fetch_file_content(self, checksum, org_id=None):
        self.requests.append((checksum, org_id))
        if checksum not in self.contents:
            raise BackendError(f"missing {checksum}")
        return self.contents[checksum]


class FakeChef:
    def __init__(self):
        self.calls = 0

    def organization_id(self):
        self.calls += 1
        return "0123abcd"


def make_candidate(files, root_files=None, metadata=None):
    data = {
        "cookbook_name": "foo",
        "version": "1.0.0",
        "frozen?": True,
        "metadata": metadata or {"name": "foo", "version": "1.0.0"},
        "recipes": [{"name": os.path.basename(p), "path": p, "checksum": c} for p, c in files],
        "root_files": [{"name": os.path.basename(p), "path": p, "checksum": c} for p, c in root_files or []],
    }
    return CandidatePackage(cookbook=CookbookVersion.from_dict(data), user="alice")


def tar_names(archive):
    with tarfile.open(fileobj=io.BytesIO(archive), mode="r:gz") as tar:
        return sorted(tar.getnames())


class TestArchiveBuilder:
    """Fetch, hash and pack."""

    def test_build(self):
        storage = FakeStorage({"c1": b"package 'foo'\r\n", "c2": b"name 'foo'\n"})
        candidate = make_candidate([("recipes/default.rb", "c1")], [("metadata.rb", "c2")])
        hashes, archive = ArchiveBuilder(storage).build(candidate)

        assert hashes == {
            "recipes/default.rb": md5_hex(b"package 'foo'\n"),
            "metadata.rb": md5_hex(b"name 'foo'\n"),
        }
        assert candidate.file_hashes == hashes
        assert candidate.archive == archive
        assert tar_names(archive) == ["foo/metadata.json", "foo/metadata.rb", "foo/recipes/default.rb"]

    def test_ignored_files_are_skipped(self):
        storage = FakeStorage({"c1": b"x", "c2": b"*.swp\n", "c3": b"y"})
        candidate = make_candidate(
            [("recipes/default.rb", "c1"), ("recipes/.default.rb.swp", "c3")],
            [(".gitignore", "c2")],
        )
        hashes, _ = ArchiveBuilder(storage).build(candidate)
        assert candidate.gitignore == b"*.swp\n"
        assert "recipes/.default.rb.swp" not in hashes
        assert ("c3", None) not in storage.requests

    def test_files_are_written_to_workspace(self, tmp_path):
        storage = FakeStorage({"c1": b"x"})
        candidate = make_candidate([("recipes/default.rb", "c1")])
        with candidate.workspace(str(tmp_path)) as path:
            ArchiveBuilder(storage).build(candidate)
            with open(os.path.join(path, "recipes", "default.rb"), "rb") as f:
                assert f.read() == b"x"
        assert not os.path.exists(path)

    def test_organization_id_for_bookshelf(self):
        storage = FakeStorage({"c1": b"x", "c2": b"y"}, needs_organization_id=True)
        chef = FakeChef()
        candidate = make_candidate([("recipes/a.rb", "c1"), ("recipes/b.rb", "c2")])
        ArchiveBuilder(storage, chef).build(candidate)
        assert chef.calls == 1
        assert {org for _, org in storage.requests} == {"0123abcd"}

    def test_fetch_failure(self):
        candidate = make_candidate([("recipes/default.rb", "missing")])
        with pytest.raises(BackendError, match="Failed to download recipes/default.rb from the foo cookbook"):
            ArchiveBuilder(FakeStorage({})).build(candidate)

    def test_file_limit(self):
        storage = FakeStorage({"c1": b"x", "c2": b"y"})
        candidate = make_candidate([("recipes/a.rb", "c1"), ("recipes/b.rb", "c2")])
        with pytest.raises(BundleTooLargeError, match="more than 1 files"):
            ArchiveBuilder(storage, max_files=1).build(candidate)

    def test_byte_limit(self):
        storage = FakeStorage({"c1": b"x" * 10})
        candidate = make_candidate([("recipes/a.rb", "c1")])
        with pytest.raises(BundleTooLargeError) as excinfo:
            ArchiveBuilder(storage, max_bytes=5).build(candidate)
        assert excinfo.value.status == 502

    def test_path_traversal_is_refused(self, tmp_path):
        storage = FakeStorage({"c1": b"x"})
        candidate = make_candidate([("../../escape.rb", "c1")])
        with candidate.workspace(str(tmp_path)):
            with pytest.raises(BackendError, match="Refusing to write"):
                ArchiveBuilder(storage).build(candidate)

    def test_workspace_stays_in_tempdir_for_path_like_names(self, tmp_path):
        candidate = make_candidate([])
        candidate.cookbook.name = "../x"
        with candidate.workspace(str(tmp_path)) as path:
            assert os.path.dirname(path) == str(tmp_path)
            assert os.path.basename(path).startswith("alice-.._x-")
        assert list(tmp_path.iterdir()) == []


class TestMetadataJson:
    def test_html_characters_are_not_escaped(self):
        cookbook = CookbookVersion(name="foo", version="1.0.0",
                                   metadata={"dependencies": {"bar": ">= 1.0 & < 2.0"}})
        rendered = metadata_json(cookbook)
        assert b">= 1.0 & < 2.0" in rendered
        assert json.loads(rendered) == cookbook.metadata
