"""chefgate proxy server using aiohttp.

Sits in front of erchef: cookbook uploads run through the upload gate,
changes to clients, environments, nodes, roles and data bags are validated
and committed to the audit repository, and everything else is forwarded
untouched.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, Optional, Set

import aiohttp
from aiohttp import web

from constants import Constants, GateMode, ValidateChanges
from chef.auth import signer_for
from common.errors import BackendError, GateError
from common.http_client import error_from_body
from common.keyed_lock import KeyedLock
from common.stats import GateStats
from cookbook.constraints import DependencyValidator, validate_constraints
from cookbook.gate import UploadRequest, audit_record, build_chef_client, build_gate
from settings import ConfigHolder, GuardConfig, OptionKey

from .audit import AuditTrail
from .changes import change_details, cookbook_change_details
from .downloads import find_package, package_dir, package_metadata, package_url
from .request_parser import CLIENTS_PREFIX, GATE_PREFIX, ParsedRequest, RequestParser, RouteKind, drop_force
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

MAX_BODY_SIZE = 100 * 1024 * 1024


def log_error(message: str, status: int) -> None:
    """Log a failed request: 412 silently, 404 as warning, the rest as error."""
    if status == 412:
        return
    if status == 404:
        logger.warning(message)
    else:
        logger.error(message)


def error_response(message: str, status: int) -> web.Response:
    """Plain text error answer for the client."""
    log_error(message, status)
    return web.Response(status=status, text=message + "\n")


def request_organization(config: GuardConfig, parsed: ParsedRequest) -> str:
    """Organization of a request; only Enterprise Chef has real organizations."""
    if config.chef.type != "enterprise":
        return ""
    return parsed.organization


def is_client_self_update(headers: Any) -> bool:
    """True when a node updates its own object during a chef-client run."""
    return (headers.get("User-Agent", "").startswith("Chef Client")
            and headers.get("X-Ops-Request-Source") != "web")


class ChefGateServer:
    """Reverse proxy for a Chef server.

    Gate and audit work is blocking (``requests`` based) and runs on a
    thread pool; the event loop only forwards bytes.
    """

    def __init__(
        self,
        holder: ConfigHolder,
        stats: Optional[GateStats] = None,
        gate_factory: Callable[..., Any] = build_gate,
        chef_factory: Callable[..., Any] = build_chef_client,
        audit_factory: Callable[..., AuditTrail] = AuditTrail,
        max_workers: Optional[int] = None,
    ):
        """Initialize the proxy server.

        Args:
            holder: Holder of the active configuration.
            stats: Counters shown on the health endpoint.
            gate_factory: Builds an upload gate for ``(config, org, stats)``.
            chef_factory: Builds a Chef API client for ``(config, org)``.
            audit_factory: Builds an ``AuditTrail`` for ``(config, org, user)``.
            max_workers: Size of the worker pool for gate and audit work.
        """
        self._holder = holder
        self._stats = stats or GateStats()
        self._gate_factory = gate_factory
        self._chef_factory = chef_factory
        self._audit_factory = audit_factory
        self._locks = KeyedLock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="chefgate")
        self._background: Set[asyncio.Future] = set()
        self._parsers: Dict[tuple, RequestParser] = {}
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._upstream = UpstreamClient(holder.config.chef.erchef_url,
                                        timeout=Constants.REQUEST_TIMEOUT)

    @property
    def config(self) -> GuardConfig:
        return self._holder.config

    @property
    def stats(self) -> GateStats:
        return self._stats

    def _parser(self, config: GuardConfig) -> RequestParser:
        key = (config.chef.multi_tenant, bool(config.chef_clients_path))
        parser = self._parsers.get(key)
        if parser is None:
            parser = RequestParser(multi_tenant=key[0], serve_clients=key[1])
            self._parsers[key] = parser
        return parser

    def create_app(self) -> web.Application:
        """Create the aiohttp application."""
        app = web.Application(client_max_size=MAX_BODY_SIZE)
        app.router.add_get(f"{GATE_PREFIX}/health", self._health_check)
        app.router.add_route("*", "/{path:.*}", self._handle_request)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _health_check(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.json_response({
            "status": "ok",
            "version": Constants.VERSION,
            "mode": self.config.default.mode,
            "stats": self._stats.snapshot(),
        })

    async def _on_startup(self, app: web.Application) -> None:
        """Called when the server starts."""
        await self._upstream.start()
        logger.info("Proxy server starting, forwarding to %s", self._upstream.upstream)

    async def _on_cleanup(self, app: web.Application) -> None:
        """Called when the server stops."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._upstream.stop()
        self._executor.shutdown(wait=True)
        logger.info("Proxy server stopped")

    def reload(self) -> bool:
        """Reload the configuration file and point the upstream at the new erchef."""
        if not self._holder.reload():
            return False
        # Keys may have been rotated together with the config.
        signer_for.cache_clear()
        self._upstream.set_upstream(self.config.chef.erchef_url)
        return True

    async def _run_blocking(self, func: Callable, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, partial(func, *args))

    def _spawn(self, func: Callable, *args: Any) -> None:
        """Run ``func`` on the worker pool without waiting for it."""
        future = asyncio.ensure_future(self._run_blocking(func, *args))
        self._background.add(future)
        future.add_done_callback(self._background_done)

    def _background_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)

    async def _handle_request(self, request: web.Request) -> web.StreamResponse:
        """Route an incoming request.

        Args:
            request: Incoming HTTP request.

        Returns:
            HTTP response.
        """
        config = self.config
        parsed = self._parser(config).parse(request.method, request.path)

        if parsed.kind == RouteKind.COOKBOOK:
            return await self._handle_cookbook(request, parsed, config)
        if parsed.kind == RouteKind.CHANGE:
            return await self._handle_change(request, parsed, config)
        if parsed.kind == RouteKind.TIME:
            return web.json_response({"time": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")})
        if parsed.kind in (RouteKind.DOWNLOAD, RouteKind.METADATA):
            return self._handle_download(request, parsed, config)
        if parsed.kind == RouteKind.CLIENT_FILE:
            return self._handle_client_file(parsed, config)
        return await self._forward_checked(request, request.rel_url.raw_path_qs, None)

    async def _forward_request(
        self,
        request: web.Request,
        path_qs: Optional[str] = None,
        body: Optional[bytes] = None,
    ) -> web.Response:
        """Forward a request to erchef and relay its answer.

        Args:
            request: Original request.
            path_qs: Path and query string to use instead of the request's.
            body: Request body when it was already read.

        Returns:
            Response from upstream.
        """
        status, headers, response_body = await self._send_upstream(request, path_qs, body)
        return web.Response(status=status, headers=headers, body=response_body)

    async def _send_upstream(self, request: web.Request, path_qs: Optional[str] = None,
                             body: Optional[bytes] = None):
        if body is None and request.body_exists:
            body = await request.read()
        path_qs = path_qs if path_qs is not None else request.rel_url.raw_path_qs
        try:
            return await self._upstream.forward(
                path_qs,
                method=request.method,
                headers=dict(request.headers),
                body=body,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise BackendError(f"Call to {self._upstream.build_url(path_qs)} failed: {exc}") from exc

    def _process_upload(self, config: GuardConfig, upload: UploadRequest):
        gate = self._gate_factory(config, upload.organization, self._stats)
        return gate.process(upload)

    async def _handle_cookbook(self, request: web.Request, parsed: ParsedRequest,
                               config: GuardConfig) -> web.Response:
        """Gate a cookbook upload, then audit and forward it."""
        org = request_organization(config, parsed)
        user = request.headers.get("X-Ops-Userid", "")
        query, forced = drop_force(request.rel_url.raw_query_string)
        path_qs = request.rel_url.raw_path + (f"?{query}" if query else "")
        commit = config.effective(OptionKey.COMMIT_CHANGES, org)
        silent = config.effective(OptionKey.MODE, org) == GateMode.SILENT.value
        body = await request.read()

        if silent and not commit:
            return await self._forward_checked(request, path_qs, body)

        result = None
        if request.method != "DELETE":
            upload = UploadRequest(organization=org, user=user, body=body, forced=forced)
            try:
                result = await self._run_blocking(self._process_upload, config, upload)
            except GateError as exc:
                return error_response(exc.message, exc.status)

        if commit:
            frozen = result.candidate.cookbook.frozen if result else False
            source = result.source.download_url if result and result.source else None
            record = audit_record(parsed.name, parsed.version, frozen, forced, source)
            audit = self._audit_factory(config, org, user, locks=self._locks)
            self._spawn(audit.record, request.method, cookbook_change_details(parsed.name, parsed.version), record)

        return await self._forward_checked(request, path_qs, body)

    async def _forward_checked(self, request: web.Request, path_qs: str,
                               body: Optional[bytes]) -> web.Response:
        try:
            return await self._forward_request(request, path_qs, body)
        except GateError as exc:
            return error_response(exc.message, exc.status)

    def _validate(self, config: GuardConfig, org: str, body: bytes, mode: str) -> None:
        chef = self._chef_factory(config, org)
        validate_constraints(body, DependencyValidator(chef.is_frozen), mode)

    async def _handle_change(self, request: web.Request, parsed: ParsedRequest,
                             config: GuardConfig) -> web.Response:
        """Validate, forward and audit a config change."""
        org = request_organization(config, parsed)
        user = request.headers.get("X-Ops-Userid", "")
        body = await request.read()
        validate = config.effective(OptionKey.VALIDATE_CHANGES, org)
        check_constraints = request.method != "DELETE"

        if validate == ValidateChanges.ENFORCED.value and check_constraints:
            try:
                await self._run_blocking(self._validate, config, org, body, validate)
            except GateError as exc:
                return error_response(exc.message, exc.status)

        if not config.effective(OptionKey.COMMIT_CHANGES, org) or is_client_self_update(request.headers):
            return await self._forward_checked(request, request.rel_url.raw_path_qs, body)

        try:
            status, headers, response_body = await self._send_upstream(request, body=body)
        except GateError as exc:
            return error_response(exc.message, exc.status)
        if status not in (200, 201):
            return error_response(error_from_body(response_body.decode("utf-8", "replace"), status), status)

        try:
            details = change_details(parsed, body)
        except ValueError as exc:
            return error_response(f"Failed to parse variables from {request.path}: {exc}", 502)

        audit = self._audit_factory(config, org, user, locks=self._locks)
        self._spawn(audit.record, request.method, details,
                    response_body if request.method == "PUT" else body)

        if validate == ValidateChanges.PERMISSIVE.value and check_constraints:
            try:
                await self._run_blocking(self._validate, config, org, body, validate)
            except GateError as exc:
                return error_response(exc.message, exc.status)

        return web.Response(status=status, headers=headers, body=response_body)

    def _handle_download(self, request: web.Request, parsed: ParsedRequest,
                         config: GuardConfig) -> web.Response:
        """Redirect to, or describe, the newest matching chef-client package."""
        query = request.query
        try:
            relative_dir = package_dir(query.get("p", ""), query.get("pv", ""), query.get("m", ""))
            target = find_package(config.chef_clients_path, relative_dir, query.get("v", "latest"))
        except (ValueError, OSError) as exc:
            return error_response(f"Failed to read clients from disk: {exc}", 502)
        if target is None:
            return error_response(f"No client package found for {request.rel_url.query_string}", 404)

        if parsed.kind == RouteKind.DOWNLOAD:
            raise web.HTTPFound(package_url(config.chef.base_url, target))
        try:
            text = package_metadata(config.chef.base_url, config.chef_clients_path, target)
        except OSError as exc:
            return error_response(f"Failed to read client file: {exc}", 502)
        return web.Response(text=text)

    def _handle_client_file(self, parsed: ParsedRequest, config: GuardConfig) -> web.StreamResponse:
        """Serve a file below ``chef_clients.path``."""
        if not parsed.name and not parsed.raw_path.endswith("/"):
            raise web.HTTPMovedPermanently(CLIENTS_PREFIX)
        root = os.path.realpath(config.chef_clients_path)
        target = os.path.realpath(os.path.join(root, parsed.name or ""))
        if not target.startswith(root + os.sep) or not os.path.isfile(target):
            return error_response(f"File not found: {parsed.name}", 404)
        return web.FileResponse(target)

    async def start(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Start the proxy server."""
        host = host or self.config.default.listen
        port = port or self.config.default.port
        self._app = self.create_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, host, port)
        await site.start()

        logger.info("chefgate %s listening on http://%s:%s", Constants.VERSION, host, port)
        logger.info("Mode: %s", self.config.default.mode)
        logger.info("Erchef: %s", self.config.chef.erchef_url)

    async def stop(self) -> None:
        """Stop the proxy server."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None


def run_server_sync(holder: ConfigHolder) -> None:
    """Run the proxy server until SIGTERM or SIGINT.

    SIGHUP reloads the configuration file.

    Args:
        holder: Holder of the loaded configuration.
    """
    server = ChefGateServer(holder)
    loop = asyncio.new_event_loop()

    async def run():
        await server.start()
        stop_event = asyncio.Event()
        running_loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            running_loop.add_signal_handler(sig, stop_event.set)
        running_loop.add_signal_handler(signal.SIGHUP, server.reload)
        logger.info("Server started...")
        await stop_event.wait()
        logger.info("Gracefully closing connections...")
        await server.stop()

    try:
        loop.run_until_complete(run())
    except KeyboardInterrupt:
        loop.run_until_complete(server.stop())
    finally:
        loop.close()
        logger.info("Server stopped...")
