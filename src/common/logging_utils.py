"""Logging helpers shared by the proxy, the upload gate and the HTTP clients.

Keeps log configuration in one place and offers small helpers for structured
DEBUG traces (``extra_context``), redaction of secrets in URLs and a timer for
request durations.
"""
from __future__ import annotations

import logging
import os
import re
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from constants import Constants

# Query parameters that carry credentials or signatures.
_SENSITIVE_PARAMS = {
    "private_token",
    "access_token",
    "token",
    "signature",
    "awsaccesskeyid",
}

_TOKEN_PATTERN = re.compile(
    r"(?i)(token|secret|password|signature)([\"'=:\s]+)([^\s\"'&,]+)"
)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once.

    The level comes from ``level`` or the ``CHEFGATE_LOG_LEVEL`` environment
    variable and defaults to INFO.
    """
    level_name = (level or os.environ.get(Constants.ENV_LOG_LEVEL, "INFO")).upper()
    level_value = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when ``logger`` would emit DEBUG records."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping for structured log records.

    None values are dropped so handlers only see populated fields.
    """
    return {key: value for key, value in fields.items() if value is not None}


def safe_url(url: Optional[str]) -> str:
    """Return ``url`` with user info and sensitive query values masked."""
    if not url:
        return ""
    try:
        parts = urlsplit(url)
    except ValueError:
        return redact(url)

    netloc = parts.netloc
    if "@" in netloc:
        netloc = "***@" + netloc.split("@", 1)[1]

    query = parts.query
    if query:
        pairs = []
        for key, value in parse_qsl(query, keep_blank_values=True):
            if key.lower() in _SENSITIVE_PARAMS:
                value = "***"
            pairs.append((key, value))
        query = urlencode(pairs, safe="*")

    return urlunsplit((parts.scheme, netloc, parts.path, query, parts.fragment))


def redact(text: Optional[str]) -> str:
    """Mask anything that looks like a token or secret in free text."""
    if not text:
        return ""
    return _TOKEN_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}***", text)


class Timer:
    """Context manager measuring elapsed wall time."""

    def __init__(self) -> None:
        self._start: Optional[float] = None
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> int:
        """Elapsed milliseconds, up to now when the block is still running."""
        if self._start is None:
            return 0
        end = self._end if self._end is not None else time.perf_counter()
        return int((end - self._start) * 1000)
