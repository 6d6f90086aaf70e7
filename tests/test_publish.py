"""Tests for tagging and publishing accepted git sourced uploads."""

import pytest

from common.errors import BackendError
from cookbook.models import CandidatePackage, CookbookVersion, SourceReference
from cookbook.publish import UNTAG_FAILED_NOTE, Publisher, is_blacklisted
from settings import parse_config


class FakeGit:
    def __init__(self, tags=(), fail_delete=False):
        self.tags = set(tags)
        self.created = []
        self.deleted = []
        self.fail_delete = fail_delete

    def tag_exists(self, repo, tag):
        return (repo, tag) in self.tags

    def create_tag(self, repo, tag, user):
        self.created.append((repo, tag, user.name, user.mail))
        self.tags.add((repo, tag))

    def delete_tag(self, repo, tag):
        if self.fail_delete:
            raise BackendError("delete failed")
        self.deleted.append((repo, tag))


class FakeSupermarket:
    def __init__(self, error=None):
        self.error = error
        self.published = []

    def publish(self, name, tarball):
        if self.error:
            raise self.error
        self.published.append((name, tarball))


def make_candidate(name="foo"):
    candidate = CandidatePackage(cookbook=CookbookVersion(name=name, version="1.0.0", frozen=True),
                                 organization="acme", user="alice")
    candidate.archive = b"tarball"
    return candidate


GIT_SOURCE = SourceReference(location_type="github", download_url="https://gh", git_org="cookbooks",
                             private=True)

CONFIG = {
    "default": {"mail_domain": "example.com", "publish_cookbook": True, "blacklist": "^secret-"},
    "git": {"cookbooks": {"type": "github", "token": "t"}},
}


class TestPublisher:
    """Tag then publish."""

    def test_artifacts_are_left_alone(self):
        git = FakeGit()
        publisher = Publisher(parse_config(CONFIG), lambda owner: git, FakeSupermarket())
        source = SourceReference(location_type="supermarket", download_url="https://sm", artifact=True)
        assert publisher.tag_and_publish(make_candidate(), source) is None
        assert git.created == []

    def test_tag_and_publish(self):
        git = FakeGit()
        supermarket = FakeSupermarket()
        publisher = Publisher(parse_config(CONFIG), lambda owner: git, supermarket)
        assert publisher.tag_and_publish(make_candidate(), GIT_SOURCE) == "v1.0.0"
        assert git.created == [("foo", "v1.0.0", "alice", "alice@example.com")]
        assert supermarket.published == [("foo", b"tarball")]

    def test_existing_tag_is_not_recreated(self):
        git = FakeGit(tags={("foo", "v1.0.0")})
        publisher = Publisher(parse_config(CONFIG), lambda owner: git, FakeSupermarket())
        assert publisher.tag_and_publish(make_candidate(), GIT_SOURCE) is None
        assert git.created == []

    def test_blacklisted_cookbook_is_not_published(self):
        supermarket = FakeSupermarket()
        publisher = Publisher(parse_config(CONFIG), lambda owner: FakeGit(), supermarket)
        publisher.tag_and_publish(make_candidate("secret-sauce"), GIT_SOURCE)
        assert supermarket.published == []

    def test_publish_failure_removes_fresh_tag(self):
        git = FakeGit()
        supermarket = FakeSupermarket(error=BackendError("Failed to upload foo"))
        publisher = Publisher(parse_config(CONFIG), lambda owner: git, supermarket)
        with pytest.raises(BackendError, match="Failed to upload foo"):
            publisher.tag_and_publish(make_candidate(), GIT_SOURCE)
        assert git.deleted == [("foo", "v1.0.0")]

    def test_publish_failure_keeps_preexisting_tag(self):
        git = FakeGit(tags={("foo", "v1.0.0")})
        supermarket = FakeSupermarket(error=BackendError("Failed to upload foo"))
        publisher = Publisher(parse_config(CONFIG), lambda owner: git, supermarket)
        with pytest.raises(BackendError):
            publisher.tag_and_publish(make_candidate(), GIT_SOURCE)
        assert git.deleted == []

    def test_failed_untag_is_noted(self):
        git = FakeGit(fail_delete=True)
        supermarket = FakeSupermarket(error=BackendError("Failed to upload foo"))
        publisher = Publisher(parse_config(CONFIG), lambda owner: git, supermarket)
        with pytest.raises(BackendError) as excinfo:
            publisher.tag_and_publish(make_candidate(), GIT_SOURCE)
        assert excinfo.value.message == f"Failed to upload foo{UNTAG_FAILED_NOTE} (delete failed)"

    def test_missing_supermarket(self):
        publisher = Publisher(parse_config(CONFIG), lambda owner: FakeGit(), None)
        with pytest.raises(BackendError, match="no Supermarket configured"):
            publisher.tag_and_publish(make_candidate(), GIT_SOURCE)


def test_is_blacklisted_merges_customer_rules():
    config = parse_config({"default": {"blacklist": "^secret-"}, "customer": {"acme": {"blacklist": "-internal$"}}})
    assert is_blacklisted(config, "acme", "db-internal") is True
    assert is_blacklisted(config, "other", "db-internal") is False
    assert is_blacklisted(config, "other", "secret-x") is True
