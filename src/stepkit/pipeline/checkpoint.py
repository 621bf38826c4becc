"""Checkpoint codec.

A checkpoint is the UTF-8 JSON text ``{"stepName": ..., "output": ...}``
where ``stepName`` is the full display name of a completed step and
``output`` the context right after it.  The format is unversioned;
storing checkpoints and keeping them compatible is up to the caller.

Example:
    >>> text = encode_checkpoint("mul", {"x": 6})
    >>> decode_checkpoint(text)
    Checkpoint(step_name='mul', output={'x': 6})
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from stepkit.core.settings import get_settings
from stepkit.pipeline.context import Context, deep_clone, json_default
from stepkit.pipeline.exceptions import InvalidCheckpointError
from stepkit.pipeline.merge import MergePolicy, merge_context


@dataclass(frozen=True)
class Checkpoint:
    step_name: str
    output: Context

    def encode(self) -> str:
        return encode_checkpoint(self.step_name, self.output)


def encode_checkpoint(step_name: str, context: Mapping[str, Any]) -> str:
    """Serialize ``(step_name, context)``.

    Raises:
        InvalidCheckpointError: The context holds values JSON cannot represent
    """
    try:
        return json.dumps(
            {"stepName": step_name, "output": dict(context)},
            default=json_default,
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as e:
        raise InvalidCheckpointError(
            f"Context after step '{step_name}' is not JSON serializable: {e}", cause=e
        ) from e


def decode_checkpoint(data: str | bytes, *, max_bytes: int | None = None) -> Checkpoint:
    """Parse a checkpoint produced by ``encode_checkpoint``.

    Args:
        data: Checkpoint text (bytes are decoded as UTF-8)
        max_bytes: Size guard; None uses ``StepkitSettings.max_checkpoint_bytes``,
            0 disables it

    Raises:
        InvalidCheckpointError: Malformed, oversized or wrongly shaped input
    """
    if max_bytes is None:
        max_bytes = get_settings().max_checkpoint_bytes

    if isinstance(data, bytes):
        raw = data
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidCheckpointError("Checkpoint is not valid UTF-8", cause=e) from e
    elif isinstance(data, str):
        text = data
        raw = data.encode("utf-8")
    else:
        raise InvalidCheckpointError(
            f"Checkpoint must be str or bytes, got {type(data).__name__}"
        )

    if max_bytes and len(raw) > max_bytes:
        raise InvalidCheckpointError(
            f"Checkpoint is {len(raw)} bytes, limit is {max_bytes}"
        )

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidCheckpointError(f"Checkpoint is not valid JSON: {e}", cause=e) from e

    if not isinstance(payload, dict):
        raise InvalidCheckpointError("Checkpoint must be a JSON object")
    step_name = payload.get("stepName")
    output = payload.get("output")
    if not isinstance(step_name, str) or not step_name:
        raise InvalidCheckpointError("Checkpoint is missing 'stepName'")
    if not isinstance(output, dict):
        raise InvalidCheckpointError("Checkpoint 'output' must be an object")

    return Checkpoint(step_name=step_name, output=output)


def apply_override(output: Mapping[str, Any], override: Mapping[str, Any] | None) -> Context:
    """Shallow override: top-level keys of ``override`` replace wholesale."""
    base = deep_clone(dict(output))
    if not override:
        return base
    return merge_context(base, override, MergePolicy.OVERRIDE)


ResumeRequest = str | bytes | Checkpoint | Mapping[str, Any]


def parse_resume_request(request: ResumeRequest) -> tuple[Checkpoint, Context | None]:
    """Split what ``run_checkpoint`` accepts into ``(checkpoint, override)``.

    Accepts a checkpoint string/bytes, a ``Checkpoint``, or a mapping
    ``{"checkpoint": ..., "overrideData" | "override_data": {...}}``.
    """
    if isinstance(request, Checkpoint):
        return request, None
    if isinstance(request, (str, bytes)):
        return decode_checkpoint(request), None
    if isinstance(request, Mapping):
        if "checkpoint" not in request:
            raise InvalidCheckpointError("Resume request is missing 'checkpoint'")
        inner = request["checkpoint"]
        checkpoint = inner if isinstance(inner, Checkpoint) else decode_checkpoint(inner)
        override = request.get("override_data", request.get("overrideData"))
        if override is not None and not isinstance(override, Mapping):
            raise InvalidCheckpointError("Override data must be a mapping")
        return checkpoint, dict(override) if override is not None else None
    raise InvalidCheckpointError(f"Unsupported resume request: {type(request).__name__}")


__all__ = [
    "Checkpoint",
    "encode_checkpoint",
    "decode_checkpoint",
    "apply_override",
    "parse_resume_request",
]
