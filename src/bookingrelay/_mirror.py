"""Local mirror of a watched collection, rebuilt from stream events.

The streaming endpoint reports writes as ``put``/``patch`` events
against arbitrary paths below the collection (``/``, ``/<key>``,
``/<key>/booking_status``...).  The mirror applies those writes to a
local copy so every change can be reported as the full child record.
"""

from __future__ import annotations

import copy
from typing import Any


def _split_path(path: str) -> list[str]:
    return [segment for segment in path.strip("/").split("/") if segment]


def _as_children(data: Any) -> dict[str, Any]:
    """Normalize a collection value to a ``{key: child}`` dict."""
    if isinstance(data, dict):
        return {str(key): value for key, value in data.items() if value is not None}
    # Integer-like keys come back from the database as a sparse array.
    if isinstance(data, list):
        return {str(index): value for index, value in enumerate(data) if value is not None}
    return {}


def _remove_nested(target: dict[str, Any], segments: list[str]) -> None:
    """Delete the value at *segments*, pruning parents left empty."""
    parents: list[tuple[dict[str, Any], str]] = []
    node = target
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            return
        parents.append((node, segment))
        node = child
    if segments[-1] not in node:
        return
    del node[segments[-1]]
    for parent, segment in reversed(parents):
        if parent[segment]:
            break
        del parent[segment]


def _set_nested(target: dict[str, Any], segments: list[str], value: Any) -> None:
    if value is None:
        _remove_nested(target, segments)
        return
    node = target
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    node[segments[-1]] = copy.deepcopy(value)


class RecordMirror:
    """Merge streamed writes into per-record snapshots."""

    def __init__(self) -> None:
        self._records: dict[str, Any] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        """Whether the initial full-collection ``put`` has been applied."""
        return self._loaded

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def get(self, key: str) -> Any:
        return copy.deepcopy(self._records.get(key))

    def apply_put(self, path: str, data: Any) -> list[str]:
        """Apply a ``put`` and return the keys of children that changed.

        The first root ``put`` of a stream is the current collection
        contents and reports nothing.  Removed children are not reported.
        """
        segments = _split_path(path)
        if not segments:
            incoming = _as_children(data)
            if not self._loaded:
                self._records = copy.deepcopy(incoming)
                self._loaded = True
                return []
            changed = [key for key, value in incoming.items() if self._records.get(key) != value]
            self._records = copy.deepcopy(incoming)
            return changed

        key, rest = segments[0], segments[1:]
        if not rest:
            if data is None:
                self._records.pop(key, None)
                return []
            if self._records.get(key) == data:
                return []
            self._records[key] = copy.deepcopy(data)
            return [key]

        child = self._records.get(key)
        if not isinstance(child, dict):
            child = {}
        before = copy.deepcopy(child)
        _set_nested(child, rest, data)
        if not child:
            self._records.pop(key, None)
            return []
        self._records[key] = child
        return [key] if child != before else []

    def apply_patch(self, path: str, data: Any) -> list[str]:
        """Apply a ``patch`` (a multi-location update) below *path*."""
        if not isinstance(data, dict):
            return []
        base = path.rstrip("/")
        changed: list[str] = []
        for sub_path, value in data.items():
            for key in self.apply_put(f"{base}/{sub_path}", value):
                if key not in changed:
                    changed.append(key)
        return changed
