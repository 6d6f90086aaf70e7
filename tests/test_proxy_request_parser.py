"""Tests for proxy request classification."""

import pytest

from proxy.request_parser import RequestParser, RouteKind, drop_force


class TestRequestParser:
    """Route matching."""

    @pytest.mark.parametrize("method,path,kind,object_type,name", [
        ("PUT", "/organizations/acme/nodes/web1", RouteKind.CHANGE, "nodes", "web1"),
        ("DELETE", "/organizations/acme/roles/base", RouteKind.CHANGE, "roles", "base"),
        ("POST", "/organizations/acme/environments", RouteKind.CHANGE, "environments", None),
        ("POST", "/organizations/acme/clients", RouteKind.CHANGE, "clients", None),
        ("PUT", "/organizations/acme/cookbooks/apache/1.0.0", RouteKind.COOKBOOK, "cookbooks", "apache"),
        ("DELETE", "/organizations/acme/cookbooks/apache/1.0.0", RouteKind.COOKBOOK, "cookbooks", "apache"),
    ])
    def test_multi_tenant_routes(self, method, path, kind, object_type, name):
        parsed = RequestParser().parse(method, path)
        assert parsed.kind == kind
        assert parsed.organization == "acme"
        assert parsed.object_type == object_type
        assert parsed.name == name
        assert parsed.raw_path == path

    def test_cookbook_version(self):
        parsed = RequestParser().parse("PUT", "/organizations/acme/cookbooks/apache/1.0.0")
        assert parsed.version == "1.0.0"

    def test_data_bags(self):
        parser = RequestParser()
        bag = parser.parse("POST", "/organizations/acme/data/users")
        assert (bag.kind, bag.object_type, bag.bag, bag.name) == (RouteKind.CHANGE, "data", "users", None)
        item = parser.parse("PUT", "/organizations/acme/data/users/alice")
        assert (item.bag, item.name) == ("users", "alice")

    @pytest.mark.parametrize("method,path", [
        ("GET", "/organizations/acme/nodes/web1"),
        ("POST", "/organizations/acme/nodes/web1"),
        ("PUT", "/organizations/acme/nodes"),
        ("GET", "/organizations/acme/cookbooks/apache/1.0.0"),
        ("PUT", "/organizations/acme/data/users"),
        ("POST", "/organizations/acme/data/users/alice"),
        ("PUT", "/organizations/acme/sandboxes/abc"),
        ("PUT", "/nodes/web1"),
    ])
    def test_forwarded(self, method, path):
        assert RequestParser().parse(method, path).kind == RouteKind.FORWARD

    def test_single_tenant_routes(self):
        parser = RequestParser(multi_tenant=False)
        parsed = parser.parse("PUT", "/nodes/web1")
        assert parsed.kind == RouteKind.CHANGE
        assert parsed.organization == ""
        assert parser.parse("PUT", "/organizations/acme/nodes/web1").kind == RouteKind.FORWARD

    def test_time_is_always_served(self):
        assert RequestParser().parse("GET", "/chefgate/time").kind == RouteKind.TIME
        assert RequestParser().parse("POST", "/chefgate/time").kind == RouteKind.FORWARD

    def test_client_downloads_need_clients_path(self):
        assert RequestParser().parse("GET", "/chefgate/download").kind == RouteKind.FORWARD
        parser = RequestParser(serve_clients=True)
        assert parser.parse("GET", "/chefgate/download").kind == RouteKind.DOWNLOAD
        assert parser.parse("GET", "/chefgate/metadata").kind == RouteKind.METADATA
        parsed = parser.parse("GET", "/chefgate/clients/ubuntu/22.04/x86_64/chef.deb")
        assert parsed.kind == RouteKind.CLIENT_FILE
        assert parsed.name == "ubuntu/22.04/x86_64/chef.deb"
        bare = parser.parse("GET", "/chefgate/clients")
        assert bare.kind == RouteKind.CLIENT_FILE
        assert bare.name == ""


class TestDropForce:
    def test_force_is_removed(self):
        assert drop_force("force=true") == ("", True)
        assert drop_force("force&x=1") == ("x=1", True)

    def test_without_force(self):
        assert drop_force("x=1&y=2") == ("x=1&y=2", False)
        assert drop_force("") == ("", False)
