"""Clients for the Chef server API and its file storage backend."""

from .auth import RequestSigner
from .client import ChefClient
from .storage import StorageBackend

__all__ = ["RequestSigner", "ChefClient", "StorageBackend"]
