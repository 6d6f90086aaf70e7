"""Shared HTTP helpers used across the chef, registry and repository clients.

Encapsulates common request/timeout error handling so modules avoid
duplicating try/except blocks. Transport failures surface as ``BackendError``
immediately; there is no retry loop, the caller may retry the whole upload.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Optional

import requests

from constants import Constants
from common.errors import BackendError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

TIMEOUT = (Constants.CONNECT_TIMEOUT, Constants.REQUEST_TIMEOUT)


def new_session(ssl_no_verify: bool = False) -> requests.Session:
    """Return a session honouring proxy environment variables and TLS settings."""
    session = requests.Session()
    session.verify = not ssl_no_verify
    return session


def safe_request(
    method: str,
    url: str,
    *,
    context: str,
    session: Optional[requests.Session] = None,
    **kwargs: Any,
) -> requests.Response:
    """Perform an HTTP request with consistent error handling and DEBUG traces.

    Args:
        method: HTTP method.
        url: Target URL.
        context: Human-readable source tag for logs (e.g., "supermarket").
        session: Optional session to send the request with.
        **kwargs: Passed through to requests.

    Returns:
        requests.Response: The HTTP response object.

    Raises:
        BackendError: On timeouts and connection errors.
    """
    safe_target = safe_url(url)
    kwargs.setdefault("timeout", TIMEOUT)
    sender = session if session is not None else requests
    with Timer() as t:
        if is_debug_enabled(logger):
            logger.debug(
                "HTTP request",
                extra=extra_context(
                    event="http_request",
                    component="http_client",
                    action=method,
                    target=safe_target,
                    context=context,
                ),
            )
        try:
            res = sender.request(method, url, **kwargs)
        except requests.Timeout as exc:
            logger.error("%s request to %s timed out", context, safe_target)
            raise BackendError(f"Request to {safe_target} timed out: {exc}") from exc
        except requests.RequestException as exc:  # includes ConnectionError
            logger.error("%s connection error: %s", context, exc)
            raise BackendError(f"Call to {safe_target} failed: {exc}") from exc

        if is_debug_enabled(logger):
            logger.debug(
                "HTTP response",
                extra=extra_context(
                    event="http_response",
                    component="http_client",
                    action=method,
                    status_code=res.status_code,
                    duration_ms=t.duration_ms(),
                    target=safe_target,
                    context=context,
                ),
            )
        return res


def safe_get(url: str, *, context: str, **kwargs: Any) -> requests.Response:
    """Perform a GET request with consistent error handling."""
    return safe_request("GET", url, context=context, **kwargs)


def safe_post(url: str, *, context: str, **kwargs: Any) -> requests.Response:
    """Perform a POST request with consistent error handling."""
    return safe_request("POST", url, context=context, **kwargs)


def response_error(res: requests.Response) -> str:
    """Extract a readable error message from a failed response."""
    return error_from_body(res.text or "", res.status_code)


def error_from_body(body: str, status: int) -> str:
    """Readable error message from a response body.

    Chef and Supermarket reply with ``{"error": ...}``, ``{"errors": [...]}``
    or ``{"error_messages": [...]}``; anything else is returned raw.
    """
    try:
        info = json.loads(body)
    except ValueError:
        return body or f"HTTP {status}"
    if isinstance(info, dict):
        for key in ("errors", "error_messages", "error"):
            errors = info.get(key)
            if errors:
                return ";".join(str(e) for e in errors) if isinstance(errors, list) else str(errors)
    return body


def check_response(res: requests.Response, allowed: Iterable[int] = (200,)) -> None:
    """Raise ``BackendError`` unless the response status is in ``allowed``."""
    if res.status_code in tuple(allowed):
        return
    raise BackendError(response_error(res))
