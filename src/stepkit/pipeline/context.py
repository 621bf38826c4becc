"""Context helpers - cloning, shape checks and patch diffs.

The context threaded through a pipeline is a plain ``dict[str, Any]`` of
structured data.  Every step boundary clones it so a step can never
mutate what the previous step produced, and nested pipelines hand back
only what they changed.

Tags:
    stepkit, context, deepcopy, diff
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any

Context = dict[str, Any]


def deep_clone(value: Any) -> Any:
    """Return a structurally independent copy of ``value``."""
    return copy.deepcopy(value)


def is_plain_mapping(value: Any) -> bool:
    """True for ``dict`` instances (including subclasses), False otherwise.

    Mappings that are not dicts (``MappingProxyType``, custom ``Mapping``
    classes) are rejected; step outputs must be real dicts.
    """
    return isinstance(value, dict)


def compute_patch(before: Mapping[str, Any], after: Mapping[str, Any]) -> Context:
    """Keys of ``after`` that are new or differ (by deep equality) from ``before``.

    Removed keys are not represented; a nested run cannot delete keys
    from its parent.

    Example:
        >>> compute_patch({"a": 1, "b": [1]}, {"a": 1, "b": [1, 2], "c": 3})
        {'b': [1, 2], 'c': 3}
    """
    patch: Context = {}
    for key, value in after.items():
        if key not in before or not _deep_equal(before[key], value):
            patch[key] = deep_clone(value)
    return patch


def _deep_equal(left: Any, right: Any) -> bool:
    if type(left) is not type(right):
        # 1 == 1.0 == True in Python; keep type changes visible in the patch
        return False
    if isinstance(left, dict):
        if left.keys() != right.keys():
            return False
        return all(_deep_equal(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(_deep_equal(a, b) for a, b in zip(left, right))
    return bool(left == right)


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for values found in contexts."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


__all__ = ["Context", "deep_clone", "is_plain_mapping", "compute_patch", "json_default"]
