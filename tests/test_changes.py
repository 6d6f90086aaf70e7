"""Tests for change details and the audit document format."""

import json

import pytest

from proxy.changes import ChangeDetails, change_details, cookbook_change_details, name_from_body, remarshal_config
from proxy.request_parser import ParsedRequest, RouteKind


def parsed(object_type, name=None, bag=None):
    return ParsedRequest(kind=RouteKind.CHANGE, organization="acme", object_type=object_type,
                         name=name, bag=bag)


class TestChangeDetails:
    """Audit paths."""

    def test_named_object(self):
        details = change_details(parsed("nodes", name="web1"), b"")
        assert details.path == "nodes/web1.json"
        assert details.kind == "node"
        assert details.item_name == "web1"

    def test_name_from_body_on_create(self):
        details = change_details(parsed("roles"), json.dumps({"name": "base"}).encode())
        assert details.path == "roles/base.json"

    def test_data_bag_item(self):
        details = change_details(parsed("data", name="alice", bag="users"), b"")
        assert details == ChangeDetails("data_bags", "users/alice.json")
        assert details.kind == "data_bag"
        assert details.item_name == "users/alice"

    def test_data_bag_item_created(self):
        body = json.dumps({"raw_data": {"id": "bob"}}).encode()
        assert change_details(parsed("data", bag="users"), body).path == "data_bags/users/bob.json"

    def test_whole_data_bag(self):
        details = change_details(parsed("data", bag="users"), b"")
        assert details.path == "data_bags/users"

    def test_unparseable_body(self):
        with pytest.raises(ValueError):
            change_details(parsed("roles"), b"{oops")

    def test_cookbook(self):
        assert cookbook_change_details("apache", "1.0.0").path == "cookbooks/apache-1.0.0.json"

    @pytest.mark.parametrize("body,expected", [
        ({"raw_data": {"id": "a"}, "name": "b"}, "a"),
        ({"name": "b", "id": "c"}, "b"),
        ({"id": "c"}, "c"),
        ({}, ""),
    ])
    def test_name_precedence(self, body, expected):
        assert name_from_body(json.dumps(body).encode()) == expected

    def test_name_from_non_object(self):
        with pytest.raises(ValueError):
            name_from_body(b"[1, 2]")


class TestRemarshal:
    """Documents committed to git."""

    def test_automatic_attributes_are_dropped(self):
        body = json.dumps({"name": "web1", "automatic": {"ohai": 1}, "normal": {"a": "<&>"}}).encode()
        document = remarshal_config("PUT", body)
        assert document.endswith(b"\n")
        assert b"<&>" in document
        assert json.loads(document) == {"name": "web1", "normal": {"a": "<&>"}}

    def test_keys_are_sorted(self):
        document = remarshal_config("POST", b'{"b": 1, "a": 2}')
        assert document == b'{\n  "a": 2,\n  "b": 1\n}\n'

    def test_delete_keeps_body(self):
        assert remarshal_config("DELETE", b'{"z":1,"a":2}') == b'{"z":1,"a":2}\n'

    def test_non_object_body(self):
        with pytest.raises(ValueError):
            remarshal_config("PUT", b'"text"')
