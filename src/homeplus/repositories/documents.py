"""Helpers shared by the document store implementations.

Documents are nested dicts addressed with dotted field paths
("members.uid-1.role"). Timestamps travel through JSON as tagged ISO-8601
objects and come back as timezone-aware datetimes.
"""

from __future__ import annotations

import copy
import json
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

TIMESTAMP_TAG = "$timestamp"


def split_path(path: str) -> list[str]:
    parts = path.split(".")
    if not path or any(not part for part in parts):
        raise ValueError(f"Invalid field path: {path!r}")
    return parts


def get_path(document: Mapping[str, Any], path: str) -> tuple[bool, Any]:
    """Return (found, value) for a dotted path."""
    node: Any = document
    for part in split_path(path):
        if not isinstance(node, Mapping) or part not in node:
            return False, None
        node = node[part]
    return True, node


def set_path(document: dict[str, Any], path: str, value: Any) -> None:
    parts = split_path(path)
    node = document
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def delete_path(document: dict[str, Any], path: str) -> None:
    parts = split_path(path)
    node: Any = document
    for part in parts[:-1]:
        node = node.get(part) if isinstance(node, dict) else None
        if node is None:
            return
    if isinstance(node, dict):
        node.pop(parts[-1], None)


def apply_patch(document: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of document with every dotted key in patch assigned."""
    updated = copy.deepcopy(document)
    for path, value in patch.items():
        set_path(updated, path, copy.deepcopy(value))
    return updated


def add_to_set(
    document: dict[str, Any], path: str, values: Iterable[Any]
) -> dict[str, Any]:
    updated = copy.deepcopy(document)
    found, current = get_path(updated, path)
    items = list(current) if found and isinstance(current, list) else []
    for value in values:
        if value not in items:
            items.append(value)
    set_path(updated, path, items)
    return updated


def remove_from_set(
    document: dict[str, Any], path: str, values: Iterable[Any]
) -> dict[str, Any]:
    updated = copy.deepcopy(document)
    found, current = get_path(updated, path)
    if not found or not isinstance(current, list):
        return updated
    removed = list(values)
    set_path(updated, path, [item for item in current if item not in removed])
    return updated


def without_path(document: dict[str, Any], path: str) -> dict[str, Any]:
    updated = copy.deepcopy(document)
    delete_path(updated, path)
    return updated


def matches(document: Mapping[str, Any], field_equals: Mapping[str, Any]) -> bool:
    for path, expected in field_equals.items():
        found, value = get_path(document, path)
        if not found or value != expected:
            return False
    return True


def _encode_default(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return {TIMESTAMP_TAG: value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and TIMESTAMP_TAG in obj:
        return datetime.fromisoformat(obj[TIMESTAMP_TAG])
    return obj


def encode_document(document: Mapping[str, Any]) -> str:
    return json.dumps(document, default=_encode_default, sort_keys=True)


def decode_document(raw: str | bytes) -> dict[str, Any]:
    return json.loads(raw, object_hook=_decode_hook)


def encode_value(value: Any) -> str:
    """JSON text of a single value, with the same timestamp tagging."""
    return json.dumps(value, default=_encode_default)
