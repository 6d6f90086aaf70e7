"""Lookup of chef-client packages served from ``chef_clients.path``.

Packages are stored as ``<path>/<platform>/<platform version>/<machine>/``
files whose names carry the client version; ``latest`` picks the highest.
"""

from __future__ import annotations

import glob
import hashlib
import os
import re
from typing import Iterable, List, Optional, Tuple

_VERSION = re.compile(r".*?(\d+)\.(\d+)\.(\d+)-?(\d+)?.*")


def _version_key(path: str) -> Tuple[int, ...]:
    match = _VERSION.match(os.path.basename(path))
    if not match:
        return ()
    return tuple(int(part) if part else 0 for part in match.groups())


def sort_newest_first(files: Iterable[str]) -> List[str]:
    """Order package files by the version in their name, newest first."""
    return sorted(files, key=_version_key, reverse=True)


def package_dir(platform: str, platform_version: str, machine: str) -> str:
    """Relative directory of the packages for a platform.

    Raises:
        ValueError: When a component would escape the clients directory.
    """
    parts = [p for p in (platform, platform_version, machine) if p]
    for part in parts:
        if part in ("..", ".") or "/" in part or "\\" in part:
            raise ValueError(f"Invalid path component: {part!r}")
    return os.path.join(*parts) if parts else ""


def find_package(clients_path: str, relative_dir: str, version: str) -> Optional[str]:
    """Path of the newest package in ``relative_dir`` matching ``version``.

    Returns:
        Path relative to ``clients_path``, or None when nothing matches.
    """
    if version == "latest" or not version:
        version = "."
    directory = os.path.join(clients_path, relative_dir)
    matches = [f for f in glob.glob(os.path.join(glob.escape(directory), f"*{glob.escape(version)}*"))
               if os.path.isfile(f)]
    if not matches:
        return None
    return os.path.relpath(sort_newest_first(matches)[0], clients_path)


def package_url(base_url: str, relative_path: str) -> str:
    return f"{base_url.rstrip('/')}/chefgate/clients/{relative_path}"


def package_metadata(base_url: str, clients_path: str, relative_path: str) -> str:
    """``url <url> md5 <hex> sha256 <hex>`` line for a package file."""
    md5 = hashlib.md5()
    sha256 = hashlib.sha256()
    with open(os.path.join(clients_path, relative_path), "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            md5.update(chunk)
            sha256.update(chunk)
    return f"url {package_url(base_url, relative_path)} md5 {md5.hexdigest()} sha256 {sha256.hexdigest()}"
