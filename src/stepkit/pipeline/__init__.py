"""
Stepkit pipelines - builder, engine, branching and checkpoint/resume.
"""

from stepkit.pipeline.builder import Pipeline, create
from stepkit.pipeline.checkpoint import (
    Checkpoint,
    apply_override,
    decode_checkpoint,
    encode_checkpoint,
)
from stepkit.pipeline.context import compute_patch, deep_clone, is_plain_mapping
from stepkit.pipeline.engine import StepRunner
from stepkit.pipeline.exceptions import (
    CircuitOpenError,
    InvalidCheckpointError,
    MergeCollisionError,
    NonErrorThrow,
    PipelineAbortedError,
    PipelineConfigError,
    StepOutputError,
    StepTimeoutError,
)
from stepkit.pipeline.merge import MergePolicy, merge_context
from stepkit.pipeline.runtime import (
    LogConfig,
    PipelineConfig,
    RuntimeState,
    StepCompleteEvent,
    StepTimingInfo,
    StopwatchConfig,
    TimingStatus,
)
from stepkit.pipeline.step_types import (
    BehaviorOnOpen,
    BranchCase,
    CircuitBreakerConfig,
    ErrorPolicy,
    Executable,
    ParallelMode,
    StepConfig,
    StepDescriptor,
    StepKind,
)
from stepkit.pipeline.stopwatch import RunSummary, format_duration, summarize_timings

__all__ = [
    # builder
    "Pipeline",
    "create",
    "StepRunner",
    # step types
    "StepKind",
    "ErrorPolicy",
    "ParallelMode",
    "BehaviorOnOpen",
    "CircuitBreakerConfig",
    "StepConfig",
    "Executable",
    "BranchCase",
    "StepDescriptor",
    # runtime
    "LogConfig",
    "StopwatchConfig",
    "PipelineConfig",
    "RuntimeState",
    "StepCompleteEvent",
    "StepTimingInfo",
    "TimingStatus",
    # merge / context
    "MergePolicy",
    "merge_context",
    "compute_patch",
    "deep_clone",
    "is_plain_mapping",
    # checkpoint
    "Checkpoint",
    "encode_checkpoint",
    "decode_checkpoint",
    "apply_override",
    # stopwatch
    "RunSummary",
    "format_duration",
    "summarize_timings",
    # exceptions
    "StepOutputError",
    "MergeCollisionError",
    "PipelineConfigError",
    "InvalidCheckpointError",
    "StepTimeoutError",
    "PipelineAbortedError",
    "NonErrorThrow",
    "CircuitOpenError",
]
