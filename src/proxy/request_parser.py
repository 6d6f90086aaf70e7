"""Request parser that classifies Chef API paths handled by the proxy."""

from __future__ import annotations

import re
import urllib.parse
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

# Object types whose changes are committed to the audit repository.
CHANGE_TYPES = ("clients", "environments", "nodes", "roles")
DATA_BAG_TYPE = "data"
COOKBOOK_TYPE = "cookbooks"

GATE_PREFIX = "/chefgate"
CLIENTS_PREFIX = f"{GATE_PREFIX}/clients/"


class RouteKind(Enum):
    """What the proxy does with a request."""

    FORWARD = "forward"
    CHANGE = "change"
    COOKBOOK = "cookbook"
    TIME = "time"
    DOWNLOAD = "download"
    METADATA = "metadata"
    CLIENT_FILE = "client_file"


@dataclass
class ParsedRequest:
    """Result of parsing a proxied request path."""

    kind: RouteKind
    organization: str = ""
    object_type: str = ""
    bag: Optional[str] = None
    name: Optional[str] = None
    version: Optional[str] = None
    raw_path: str = ""


class RequestParser:
    """Maps a method and path to a ``ParsedRequest``.

    Paths are matched with the ``/organizations/<org>`` prefix when the Chef
    server is multi-tenant and without it otherwise. Unknown paths and
    methods a route does not handle are forwarded untouched.

    Args:
        multi_tenant: Whether Chef API paths carry an organization prefix.
        serve_clients: Whether the chef-client download endpoints are enabled.
    """

    _ORG_PREFIX = r"^/organizations/(?P<org>[^/]+)"

    def __init__(self, multi_tenant: bool = True, serve_clients: bool = False):
        self._serve_clients = serve_clients
        prefix = self._ORG_PREFIX if multi_tenant else "^"
        types = "|".join(CHANGE_TYPES)
        # (pattern, kind, allowed methods)
        self._routes = [
            (re.compile(prefix + r"/(?P<type>data)/(?P<bag>[^/]+)$"),
             RouteKind.CHANGE, ("POST", "DELETE")),
            (re.compile(prefix + r"/(?P<type>data)/(?P<bag>[^/]+)/(?P<name>[^/]+)$"),
             RouteKind.CHANGE, ("PUT", "DELETE")),
            (re.compile(prefix + rf"/(?P<type>{types})$"),
             RouteKind.CHANGE, ("POST",)),
            (re.compile(prefix + rf"/(?P<type>{types})/(?P<name>[^/]+)$"),
             RouteKind.CHANGE, ("PUT", "DELETE")),
            (re.compile(prefix + r"/(?P<type>cookbooks)/(?P<name>[^/]+)/(?P<version>[^/]+)$"),
             RouteKind.COOKBOOK, ("PUT", "DELETE")),
        ]

    def parse(self, method: str, path: str) -> ParsedRequest:
        """Classify ``method`` on ``path``.

        Args:
            method: HTTP method.
            path: Decoded request path without query string.

        Returns:
            ParsedRequest; ``kind`` is FORWARD when nothing matched.
        """
        method = method.upper()
        parsed = self._parse_gate_path(method, path)
        if parsed is not None:
            return parsed

        for pattern, kind, methods in self._routes:
            match = pattern.match(path)
            if not match or method not in methods:
                continue
            groups = match.groupdict()
            return ParsedRequest(
                kind=kind,
                organization=groups.get("org") or "",
                object_type=groups["type"],
                bag=groups.get("bag"),
                name=groups.get("name"),
                version=groups.get("version"),
                raw_path=path,
            )
        return ParsedRequest(kind=RouteKind.FORWARD, raw_path=path)

    def _parse_gate_path(self, method: str, path: str) -> Optional[ParsedRequest]:
        if not path.startswith(GATE_PREFIX + "/") or method not in ("GET", "HEAD"):
            return None
        if path == f"{GATE_PREFIX}/time":
            return ParsedRequest(kind=RouteKind.TIME, raw_path=path)
        if not self._serve_clients:
            return None
        if path == f"{GATE_PREFIX}/download":
            return ParsedRequest(kind=RouteKind.DOWNLOAD, raw_path=path)
        if path == f"{GATE_PREFIX}/metadata":
            return ParsedRequest(kind=RouteKind.METADATA, raw_path=path)
        if path.startswith(CLIENTS_PREFIX) or path == CLIENTS_PREFIX.rstrip("/"):
            return ParsedRequest(
                kind=RouteKind.CLIENT_FILE,
                name=path[len(CLIENTS_PREFIX):],
                raw_path=path,
            )
        return None


def drop_force(query_string: str) -> Tuple[str, bool]:
    """Remove the ``force`` parameter from a query string.

    Returns:
        Tuple of the remaining query string and whether ``force`` was present.
    """
    params = urllib.parse.parse_qsl(query_string, keep_blank_values=True)
    kept = [(key, value) for key, value in params if key != "force"]
    if len(kept) == len(params):
        return query_string, False
    return urllib.parse.urlencode(kept), True
