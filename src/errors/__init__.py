"""Error taxonomy and resilience helpers.

Provides the classified `PipelineError`, `classify` for arbitrary exceptions,
`with_retry` (exponential backoff with jitter that fails fast on
non-retryable errors) and `with_cleanup` (compensating actions that never
mask the original failure).
"""

from .lib import (
    ErrorKind,
    PipelineError,
    RetryConfig,
    calculate_delay,
    classify,
    with_cleanup,
    with_retry,
)

__all__ = [
    "ErrorKind",
    "PipelineError",
    "classify",
    "RetryConfig",
    "calculate_delay",
    "with_retry",
    "with_cleanup",
]
