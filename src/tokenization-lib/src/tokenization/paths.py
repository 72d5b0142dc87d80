"""
tokenization.paths — Dotted-path access into parsed JSON bodies.

Paths such as "payment.card" address nested mappings. The reserved keys
"", "root" and "body" address the whole tree and are checked before the
path is split.
"""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from typing import Any

ROOT_OBJECT_KEYS = frozenset({"", "root", "body"})


class _Missing:
    """Sentinel for an absent path; distinct from a present None value."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def is_root_key(key: str) -> bool:
    return key in ROOT_OBJECT_KEYS


def split_path(path: str) -> list[str]:
    return [segment for segment in path.split(".") if segment]


def get(tree: Any, path: str) -> Any:
    """Return the value at path, or MISSING if any segment does not resolve."""
    if is_root_key(path):
        return tree
    value = tree
    for segment in split_path(path):
        if not isinstance(value, Mapping) or segment not in value:
            return MISSING
        value = value[segment]
    return value


def _parent(tree: MutableMapping[str, Any], segments: list[str]) -> MutableMapping[str, Any]:
    parent = tree
    for segment in segments[:-1]:
        parent = parent[segment]
    return parent


def set(tree: MutableMapping[str, Any], path: str, value: Any) -> None:  # noqa: A001
    """Write value at path. Every segment but the last must already resolve to a mapping."""
    segments = split_path(path)
    if not segments:
        raise ValueError("set() needs a sub-path; replace the whole tree instead")
    _parent(tree, segments)[segments[-1]] = value


def delete(tree: MutableMapping[str, Any], path: str) -> None:
    """Remove the value at path; an absent leaf is left alone."""
    segments = split_path(path)
    if not segments:
        raise ValueError("delete() needs a sub-path")
    _parent(tree, segments).pop(segments[-1], None)
