"""
Stepkit - composable async pipelines with retries, timeouts, branching
and checkpoint/resume.

    from stepkit import create

    pipeline = create().step("fetch", fetch_user).transform("shape", shape)
    result = await pipeline.run({"user_id": 42})
"""

__version__ = "0.1.0"

from stepkit.core.errors import StepkitError, is_retryable  # noqa: E402
from stepkit.execution.retry import ExponentialBackoff, LinearBackoff, never_retry  # noqa: E402
from stepkit.execution.timeout import AbortSignal  # noqa: E402
from stepkit.pipeline import *  # noqa: E402,F401,F403
from stepkit.pipeline import __all__ as _pipeline_all  # noqa: E402

__all__ = [
    "__version__",
    "StepkitError",
    "AbortSignal",
    "ExponentialBackoff",
    "LinearBackoff",
    "is_retryable",
    "never_retry",
    *_pipeline_all,
]
