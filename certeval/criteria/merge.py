"""Recursive merge and structural diff over criteria maps."""

import copy
import json
from typing import Any, List, Mapping


def deep_merge(base: Mapping[str, Any], updates: Mapping[str, Any]) -> dict:
    """
    Merge updates into a copy of base.

    Nested mappings merge key by key; every other value (lists included)
    replaces the old one wholesale. Neither input is modified.
    """
    merged = copy.deepcopy(dict(base))
    for key, value in updates.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _canonical(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def changed_keys(old: Mapping[str, Any], new: Mapping[str, Any]) -> List[str]:
    """Names present in only one map or whose definitions differ, sorted."""
    names = set(old) | set(new)
    return sorted(
        name
        for name in names
        if name not in old or name not in new or _canonical(old[name]) != _canonical(new[name])
    )
