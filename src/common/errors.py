"""Error taxonomy of the upload gate.

Every error carries the HTTP status the proxy answers with. Client faults
mean "your cookbook is bad", backend faults mean "we could not check".
"""
from __future__ import annotations

from typing import Optional


class GateError(Exception):
    """Base error; ``status`` is the HTTP status surfaced to the caller."""

    status = 502

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status

    def __str__(self) -> str:
        return self.message


class ClientFaultError(GateError):
    """The uploaded content or its constraints violate a gate rule."""

    status = 412


class FrozenCookbookError(ClientFaultError):
    """An attempt to overwrite a frozen cookbook version."""

    status = 409


class ContentMismatchError(ClientFaultError):
    """Uploaded files differ from the resolved source."""


class DependencyError(ClientFaultError):
    """A referenced cookbook version is unfrozen or badly constrained."""


class SourceNotFoundError(ClientFaultError):
    """No registry or repository holds the cookbook being uploaded."""


class CheckFailedError(ClientFaultError):
    """An external lint check reported findings."""


class BackendError(GateError):
    """A collaborator (storage, registry, git host) could not be reached or failed."""

    status = 502


class InvalidTokenError(BackendError):
    """The token configured for a git organization or group was rejected."""


class BundleTooLargeError(BackendError):
    """The rebuilt cookbook exceeds the configured file or byte limits."""


class CheckExecutionError(GateError):
    """An external lint check could not be executed at all."""

    status = 500


class IgnorePatternError(ValueError):
    """An ignore file contains a pattern that cannot be parsed."""
