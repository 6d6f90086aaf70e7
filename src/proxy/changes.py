"""Details of a config change (node, role, data bag, ...) for the audit trail."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .request_parser import COOKBOOK_TYPE, DATA_BAG_TYPE, ParsedRequest


@dataclass(frozen=True)
class ChangeDetails:
    """Where a change lands in the audit repository.

    Attributes:
        object_type: Top-level directory (``nodes``, ``data_bags``, ...).
        item: File (or directory for whole data bags) below it.
    """

    object_type: str
    item: str

    @property
    def path(self) -> str:
        return f"{self.object_type}/{self.item}"

    @property
    def kind(self) -> str:
        """Singular object type, e.g. ``node``."""
        return self.object_type[:-1] if self.object_type.endswith("s") else self.object_type

    @property
    def item_name(self) -> str:
        return self.item[:-len(".json")] if self.item.endswith(".json") else self.item


def name_from_body(body: bytes) -> str:
    """Name of the object in a request body.

    Data bag items carry it as ``raw_data.id`` (or a plain ``id``).

    Raises:
        ValueError: When the body is not a JSON object.
    """
    data: Any = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    raw_data = data.get("raw_data")
    if isinstance(raw_data, dict) and raw_data.get("id"):
        return str(raw_data["id"])
    if data.get("name"):
        return str(data["name"])
    return str(data.get("id") or "")


def change_details(parsed: ParsedRequest, body: Optional[bytes]) -> ChangeDetails:
    """Resolve the audit path of a change request.

    Raises:
        ValueError: When the name has to come from an unparseable body.
    """
    item = ""
    if parsed.name:
        item = f"{parsed.name}.json"
    elif body:
        item = f"{name_from_body(body)}.json"

    if parsed.object_type == DATA_BAG_TYPE:
        item = f"{parsed.bag}/{item}" if item else str(parsed.bag)
        return ChangeDetails(object_type="data_bags", item=item)
    return ChangeDetails(object_type=parsed.object_type, item=item)


def cookbook_change_details(name: str, version: str) -> ChangeDetails:
    return ChangeDetails(object_type=COOKBOOK_TYPE, item=f"{name}-{version}.json")


def remarshal_config(method: str, body: bytes) -> bytes:
    """Normalize a body into the document stored in git.

    Deletes keep the body as is. Otherwise ``automatic`` attributes are
    dropped and the JSON is pretty printed with sorted keys, ``<``, ``>``
    and ``&`` left unescaped.

    Raises:
        ValueError: When the body is not a JSON object.
    """
    if method.upper() == "DELETE":
        return body + b"\n"
    config: Dict[str, Any] = json.loads(body)
    if not isinstance(config, dict):
        raise ValueError(f"expected a JSON object, got {type(config).__name__}")
    config.pop("automatic", None)
    return (json.dumps(config, indent=2, sort_keys=True, ensure_ascii=False) + "\n").encode("utf-8")
