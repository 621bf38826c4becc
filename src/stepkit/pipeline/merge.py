"""Merge algebra for step outputs.

A step's output is merged into the running context key by key.  Keys the
context does not have yet are always added; what happens on a collision
is decided by the step's ``merge_policy``:

    override  patch value wins
    error     raise MergeCollisionError naming the key
    warn      call on_collision(key), then patch value wins
    skip      context value is kept
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from stepkit.pipeline.context import Context, deep_clone
from stepkit.pipeline.exceptions import MergeCollisionError, PipelineConfigError


class MergePolicy(str, Enum):
    """What to do when an output key already exists in the context."""

    OVERRIDE = "override"
    ERROR = "error"
    WARN = "warn"
    SKIP = "skip"

    @classmethod
    def coerce(cls, value: MergePolicy | str) -> MergePolicy:
        try:
            return cls(value)
        except ValueError:
            raise PipelineConfigError(
                f"Unknown merge policy: {value!r}", field="merge_policy"
            ) from None


def merge_context(
    base: Mapping[str, Any],
    patch: Mapping[str, Any],
    policy: MergePolicy | str = MergePolicy.OVERRIDE,
    on_collision: Callable[[str], None] | None = None,
) -> Context:
    """Merge ``patch`` into a copy of ``base``.

    Args:
        base: Current context, left untouched
        patch: Step output, left untouched
        policy: Collision policy
        on_collision: Called with the key for every collision under ``warn``

    Returns:
        A new dict sharing no structure with ``base`` or ``patch``

    Raises:
        MergeCollisionError: A key collides under ``error``
    """
    policy = MergePolicy.coerce(policy)
    merged: Context = deep_clone(dict(base))

    for key, value in patch.items():
        if key in merged:
            if policy is MergePolicy.ERROR:
                raise MergeCollisionError(key)
            if policy is MergePolicy.SKIP:
                continue
            if policy is MergePolicy.WARN and on_collision is not None:
                on_collision(key)
        merged[key] = deep_clone(value)

    return merged


__all__ = ["MergePolicy", "merge_context"]
