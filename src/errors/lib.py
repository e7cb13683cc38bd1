"""Error classification, retry and cleanup helpers.

Every external call in the pipeline (LLM invocation, image generation,
storage and database access) runs through `with_retry`, which uses
`classify` to decide between backing off and failing fast.

Example:
    >>> from src.errors import RetryConfig, with_retry
    >>> result = await with_retry(
    ...     lambda: client.fetch(url),
    ...     RetryConfig(max_attempts=5),
    ...     operation="fetch_asset",
    ... )
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import random
import re
import sqlite3
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from src.config import EnvVar, get_environment

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Error Taxonomy
# =============================================================================


class ErrorKind(str, Enum):
    """Stable categories surfaced to callers."""

    NETWORK = "network"
    STORAGE = "storage"
    DATABASE = "database"
    VALIDATION = "validation"
    PROCESSING = "processing"


class PipelineError(Exception):
    """A classified pipeline failure.

    Attributes:
        kind: Error category.
        retryable: Whether the failed operation may succeed if repeated.
        message: Human-readable message safe to show to end users.
        context: Technical details (operation, step, ids, original error).
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PROCESSING,
        retryable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.retryable = retryable
        self.context = context or {}

    def __repr__(self) -> str:
        return (
            f"PipelineError(kind={self.kind.value!r}, retryable={self.retryable}, "
            f"message={self.message!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and step tracking."""
        return {
            "kind": self.kind.value,
            "retryable": self.retryable,
            "message": self.message,
            "context": self.context,
        }


# =============================================================================
# Classification
# =============================================================================

_NETWORK_PATTERNS = (
    "rate limit",
    "rate_limit",
    "ratelimit",
    "429",
    "quota",
    "timeout",
    "timed out",
    "connection",
    "econnrefused",
    "etimedout",
    "network",
)
_AUTH_PATTERNS = ("auth", "api key", "api_key", "401", "403", "forbidden")
_STORAGE_PATTERNS = ("storage", "bucket", "blob")
_CONFLICT_PATTERNS = ("already exists", "duplicate")
_CONSTRAINT_PATTERNS = (
    "unique constraint",
    "check constraint",
    "foreign key constraint",
    "constraint failed",
    "violates",
)
_TRANSIENT_DB_PATTERNS = ("database is locked", "database is busy", "server error")
_OVERLOAD_PATTERNS = (
    "overloaded",
    "busy",
    "502",
    "503",
    "temporarily unavailable",
    "service unavailable",
)
_VALIDATION_PATTERNS = ("json", "parse", "validation", "schema")

_SQLSTATE_RE = re.compile(r"\b(23\d{3}|08000|08006|50000)\b")


def _matches(haystack: str, patterns: Iterable[str]) -> bool:
    return any(pattern in haystack for pattern in patterns)


def _sqlstate(error: BaseException, haystack: str) -> str | None:
    """Extract a SQLSTATE code from an error attribute or its message."""
    code = getattr(error, "code", None) or getattr(error, "sqlstate", None)
    if isinstance(code, str) and len(code) == 5:
        return code
    match = _SQLSTATE_RE.search(haystack)
    return match.group(1) if match else None


def classify(
    error: BaseException, context: dict[str, Any] | None = None
) -> PipelineError:
    """Classify an arbitrary exception into the pipeline error taxonomy.

    Already classified errors are returned unchanged (extra context is merged).

    Args:
        error: The exception raised by an operation.
        context: Optional context; ``{"component": "storage"}`` marks a
            storage operation.

    Returns:
        PipelineError describing kind and retryability.
    """
    context = dict(context or {})

    if isinstance(error, PipelineError):
        if context:
            error.context = {**context, **error.context}
        return error

    message = str(error) or type(error).__name__
    haystack = f"{type(error).__name__} {message}".lower()
    details = {**context, "error_type": type(error).__name__}

    def make(kind: ErrorKind, retryable: bool) -> PipelineError:
        return PipelineError(message, kind=kind, retryable=retryable, context=details)

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return make(ErrorKind.NETWORK, True)
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return make(ErrorKind.NETWORK, True)

    if isinstance(error, PydanticValidationError):
        return make(ErrorKind.VALIDATION, False)

    status = getattr(error, "status_code", None)
    if isinstance(status, int) and not isinstance(status, bool):
        if status in (408, 429):
            return make(ErrorKind.NETWORK, True)
        if status in (401, 403):
            return make(ErrorKind.VALIDATION, False)
        if status >= 500:
            return make(ErrorKind.PROCESSING, True)
        if status >= 400:
            return make(ErrorKind.VALIDATION, False)

    if isinstance(error, sqlite3.IntegrityError):
        return make(ErrorKind.DATABASE, False)
    if isinstance(error, sqlite3.OperationalError):
        return make(ErrorKind.DATABASE, _matches(haystack, ("locked", "busy")))

    if _matches(haystack, _NETWORK_PATTERNS):
        return make(ErrorKind.NETWORK, True)

    if _matches(haystack, _AUTH_PATTERNS):
        return make(ErrorKind.VALIDATION, False)

    in_storage = context.get("component") == "storage" or _matches(
        haystack, _STORAGE_PATTERNS
    )
    if in_storage:
        if _matches(haystack, _CONFLICT_PATTERNS):
            return make(ErrorKind.STORAGE, False)
        return make(ErrorKind.STORAGE, True)

    sqlstate = _sqlstate(error, haystack)
    if (sqlstate and sqlstate.startswith("23")) or _matches(
        haystack, _CONSTRAINT_PATTERNS
    ):
        return make(ErrorKind.DATABASE, False)
    if sqlstate in ("08000", "08006", "50000") or _matches(
        haystack, _TRANSIENT_DB_PATTERNS
    ):
        return make(ErrorKind.DATABASE, True)

    if _matches(haystack, _OVERLOAD_PATTERNS):
        return make(ErrorKind.PROCESSING, True)

    if _matches(haystack, _VALIDATION_PATTERNS):
        return make(ErrorKind.VALIDATION, False)

    return make(ErrorKind.DATABASE, False)


# =============================================================================
# Retry
# =============================================================================


@dataclass
class RetryConfig:
    """Configuration for retry with exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first call.
        base_delay: Delay before the second attempt (seconds).
        max_delay: Upper bound for any single delay (seconds).
        exponential_base: Growth factor between attempts.
        jitter: Apply uniform +/-25% jitter to each delay.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")

    @classmethod
    def from_environment(cls) -> RetryConfig:
        """Build a config from RETRY_* environment variables."""
        return cls(
            max_attempts=get_environment(EnvVar.RETRY_MAX_ATTEMPTS),
            base_delay=get_environment(EnvVar.RETRY_BASE_DELAY),
            max_delay=get_environment(EnvVar.RETRY_MAX_DELAY),
        )


JITTER_RATIO = 0.25


def calculate_delay(
    attempt: int,
    config: RetryConfig,
    rng: random.Random | None = None,
) -> float:
    """Delay before the attempt following ``attempt`` (1-based).

    ``min(max_delay, base_delay * exponential_base ** (attempt - 1))`` with
    optional uniform jitter.
    """
    delay = config.base_delay * config.exponential_base ** (attempt - 1)
    delay = min(delay, config.max_delay)
    if config.jitter and delay > 0:
        spread = delay * JITTER_RATIO
        delay += (rng or random).uniform(-spread, spread)
    return max(0.0, delay)


async def with_retry(
    op: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    *,
    operation: str | None = None,
    context: dict[str, Any] | None = None,
) -> T:
    """Run ``op`` with classified retry and exponential backoff.

    Non-retryable errors are re-raised immediately. Retryable errors are
    retried until ``max_attempts`` is reached, then the last error is
    re-raised unchanged.

    Args:
        op: Zero-argument coroutine factory.
        config: Retry policy (defaults to RetryConfig()).
        operation: Name used in log messages.
        context: Classification context (e.g. ``{"component": "storage"}``).

    Returns:
        The value returned by ``op``.
    """
    config = config or RetryConfig()
    name = operation or getattr(op, "__name__", "operation")

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await op()
        except Exception as e:
            classified = classify(e, context)

            if not classified.retryable:
                logger.warning(
                    f"Non-retryable error encountered, failing immediately: "
                    f"{name} ({classified.kind.value}) attempt {attempt}: {e}"
                )
                raise

            if attempt >= config.max_attempts:
                logger.error(
                    f"All retry attempts exhausted: {name} after "
                    f"{config.max_attempts} attempts: {e}"
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.info(
                f"Operation failed, retrying: {name} ({classified.kind.value}) "
                f"attempt {attempt}/{config.max_attempts}, next in {delay:.2f}s: {e}"
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


# =============================================================================
# Cleanup
# =============================================================================


Cleanup = Callable[[], Any]


async def with_cleanup(
    op: Callable[[], Awaitable[T]],
    cleanups: Iterable[Cleanup],
    *,
    operation: str | None = None,
) -> T:
    """Run ``op``; on failure run every cleanup and re-raise the original error.

    Cleanups may be plain callables or coroutine functions. A failing cleanup
    is logged and the remaining cleanups still run.
    """
    try:
        return await op()
    except Exception:
        name = operation or getattr(op, "__name__", "operation")
        for index, cleanup in enumerate(cleanups):
            try:
                result = cleanup()
                if inspect.isawaitable(result):
                    await result
            except Exception as cleanup_error:
                logger.error(
                    f"Cleanup {index} for {name} failed: {cleanup_error}"
                )
        raise


__all__ = [
    "ErrorKind",
    "PipelineError",
    "classify",
    "RetryConfig",
    "calculate_delay",
    "with_retry",
    "with_cleanup",
]
