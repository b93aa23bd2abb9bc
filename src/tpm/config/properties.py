# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/tpm/config/properties.py

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .keys import (
    CONNECTORS,
    DATASERVICES,
    DEFAULTS,
    DEPLOYMENT_DATASERVICE,
    DEPLOYMENT_HOST,
    HOSTS,
    MANAGERS,
    REPL_SERVICES,
    SYSTEM,
)

Key = Union[str, Sequence[str]]


def merge_dicts(base: Dict[str, Any], top: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a new dict with *top* merged over *base*.
    Nested dicts are merged recursively, anything else in *top* wins.
    """
    merged = copy.deepcopy(base)
    for key, value in top.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = merge_dicts(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class Properties:
    """
    Hierarchical property tree for one host (or the whole deployment
    before it is expanded).

    Keys are either dotted strings (``"hosts.db1.home_directory"``) or
    segment lists (``["hosts", "db1", "home_directory"]``). Use the list
    form when a segment may itself contain a dot.
    """

    def __init__(self, props: Optional[Dict[str, Any]] = None):
        self.props: Dict[str, Any] = props if props is not None else {}

    # ------------------------------------------------------------------
    # key handling
    # ------------------------------------------------------------------
    @staticmethod
    def segments(key: Key) -> List[str]:
        if isinstance(key, (list, tuple)):
            return [str(k) for k in key]
        return str(key).split(".")

    def get_nested(self, key: Key) -> Any:
        node: Any = self.props
        for seg in self.segments(key):
            if not isinstance(node, dict) or seg not in node:
                return None
            node = node[seg]
        return node

    def _scoped_candidates(self, name: str) -> List[List[str]]:
        host = self.get_nested([DEPLOYMENT_HOST])
        ds = self.get_nested([DEPLOYMENT_DATASERVICE])

        candidates: List[List[str]] = []
        if host:
            candidates.append([HOSTS, host, name])
        candidates.append([HOSTS, DEFAULTS, name])
        if ds:
            candidates.append([DATASERVICES, ds, name])
        if ds and host:
            candidates.append([REPL_SERVICES, f"{ds}_{host}", name])
            candidates.append([MANAGERS, f"{ds}_{host}", name])
        if host:
            candidates.append([CONNECTORS, host, name])
        return candidates

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, key: Key, default: Any = None) -> Any:
        """
        Look a key up. A single-segment key that is not set at the top
        level is searched for in the scope of the deployment host:
        host, data service, replication service, manager, connector.
        """
        segs = self.segments(key)
        value = self.get_nested(segs)
        if value is None and len(segs) == 1:
            for candidate in self._scoped_candidates(segs[0]):
                value = self.get_nested(candidate)
                if value is not None:
                    break
        return default if value is None else value

    def keys(self, key: Optional[Key] = None) -> List[str]:
        node = self.props if key is None else self.get_nested(key)
        if not isinstance(node, dict):
            return []
        return list(node.keys())

    def members(self, group: str) -> List[str]:
        """Member aliases of a group, without the DEFAULTS pseudo-member."""
        return [k for k in self.keys([group]) if k != DEFAULTS]

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def _assign(self, segs: List[str], value: Any) -> None:
        node = self.props
        for seg in segs[:-1]:
            if not isinstance(node.get(seg), dict):
                node[seg] = {}
            node = node[seg]
        node[segs[-1]] = copy.deepcopy(value)

    def set(self, key: Key, value: Any) -> None:
        """
        Set a value. ``None`` and ``[]`` delete the key, a dict is
        merged into an existing dict.
        """
        segs = self.segments(key)
        if value is None or value == []:
            self.delete(segs)
            return

        current = self.get_nested(segs)
        if isinstance(value, dict) and isinstance(current, dict):
            self._assign(segs, merge_dicts(current, value))
        else:
            self._assign(segs, value)

    def set_default(self, key: Key, value: Any) -> None:
        if self.get_nested(key) is None:
            self.set(key, value)

    def delete(self, key: Key) -> None:
        segs = self.segments(key)
        parent = self.get_nested(segs[:-1]) if len(segs) > 1 else self.props
        if isinstance(parent, dict):
            parent.pop(segs[-1], None)

    def include(self, key: Key, value: Dict[str, Any]) -> None:
        """Merge *value* underneath the current value; existing entries win."""
        segs = self.segments(key)
        current = self.get_nested(segs)
        if isinstance(current, dict):
            self._assign(segs, merge_dicts(value, current))
        elif current is None:
            self._assign(segs, value)

    def override(self, key: Key, value: Dict[str, Any]) -> None:
        """Merge *value* over the current value; new entries win."""
        segs = self.segments(key)
        current = self.get_nested(segs)
        if isinstance(current, dict):
            self._assign(segs, merge_dicts(current, value))
        else:
            self._assign(segs, value)

    def append(self, key: Key, values: Sequence[Any]) -> None:
        segs = self.segments(key)
        current = list(self.get_nested(segs) or [])
        for v in values:
            if v not in current:
                current.append(v)
        self._assign(segs, current)

    def reset(self) -> None:
        self.props = {}

    def dup(self) -> "Properties":
        return Properties(copy.deepcopy(self.props))

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    def saveable(self) -> Dict[str, Any]:
        props = copy.deepcopy(self.props)
        props.pop(SYSTEM, None)
        return props

    def store(self, path: Union[str, Path], *, include_system: bool = True) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = self.props if include_system else self.saveable()
        path.write_text(json.dumps(data, indent=2, sort_keys=True))
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Properties":
        return cls(json.loads(Path(path).read_text() or "{}"))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.props)

    def __contains__(self, key: Key) -> bool:
        return self.get_nested(key) is not None

    def __repr__(self) -> str:
        return f"Properties(host={self.get_nested([DEPLOYMENT_HOST])!r})"
