"""chefgate proxy server package.

This package provides the HTTP reverse proxy in front of the Chef server:
request classification, forwarding to erchef, the config change audit trail
and the chef-client download endpoints.
"""

from .request_parser import RequestParser, ParsedRequest, RouteKind
from .upstream import UpstreamClient
from .audit import AuditTrail
from .server import ChefGateServer, run_server_sync

__all__ = [
    "RequestParser",
    "ParsedRequest",
    "RouteKind",
    "UpstreamClient",
    "AuditTrail",
    "ChefGateServer",
    "run_server_sync",
]
