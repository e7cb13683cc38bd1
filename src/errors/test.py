"""Tests for error classification, retry and cleanup."""

import random
import sqlite3

import httpx
import pytest
from pydantic import BaseModel

from .lib import (
    ErrorKind,
    PipelineError,
    RetryConfig,
    calculate_delay,
    classify,
    with_cleanup,
    with_retry,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry config without real waiting."""
    return RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


class FlakyOperation:
    """Coroutine factory that fails a fixed number of times."""

    def __init__(self, failures: int, error: Exception, result: str = "ok"):
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


# =============================================================================
# classify
# =============================================================================


class TestClassify:
    """Tests for the error classification rules."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "message",
        [
            "Request timed out",
            "connect ECONNREFUSED 127.0.0.1:443",
            "ETIMEDOUT while reading",
            "Rate limit exceeded (429)",
            "Connection reset by peer",
        ],
    )
    def test_network_messages_retryable(self, message):
        result = classify(RuntimeError(message))
        assert result.kind == ErrorKind.NETWORK
        assert result.retryable is True

    @pytest.mark.unit
    def test_httpx_transport_error(self):
        result = classify(httpx.ConnectError("boom"))
        assert result.kind == ErrorKind.NETWORK
        assert result.retryable

    @pytest.mark.unit
    def test_builtin_timeout(self):
        assert classify(TimeoutError()).kind == ErrorKind.NETWORK

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "message", ["Invalid API key provided", "HTTP 401", "403 Forbidden"]
    )
    def test_auth_is_validation(self, message):
        result = classify(RuntimeError(message))
        assert result.kind == ErrorKind.VALIDATION
        assert result.retryable is False

    @pytest.mark.unit
    def test_storage_conflict_not_retryable(self):
        result = classify(
            RuntimeError("The resource already exists"),
            {"component": "storage"},
        )
        assert result.kind == ErrorKind.STORAGE
        assert result.retryable is False

    @pytest.mark.unit
    def test_storage_duplicate_from_message(self):
        result = classify(RuntimeError("Bucket rejected duplicate object"))
        assert result.kind == ErrorKind.STORAGE
        assert not result.retryable

    @pytest.mark.unit
    def test_other_storage_fault_retryable(self):
        result = classify(RuntimeError("disk hiccup"), {"component": "storage"})
        assert result.kind == ErrorKind.STORAGE
        assert result.retryable

    @pytest.mark.unit
    def test_integrity_error_terminal(self):
        result = classify(sqlite3.IntegrityError("UNIQUE constraint failed: x.id"))
        assert result.kind == ErrorKind.DATABASE
        assert not result.retryable

    @pytest.mark.unit
    def test_locked_database_retryable(self):
        result = classify(sqlite3.OperationalError("database is locked"))
        assert result.kind == ErrorKind.DATABASE
        assert result.retryable

    @pytest.mark.unit
    def test_sqlstate_codes(self):
        class DbError(Exception):
            def __init__(self, message, code):
                super().__init__(message)
                self.code = code

        assert not classify(DbError("dup", "23505")).retryable
        assert classify(DbError("gone", "08006")).retryable

    @pytest.mark.unit
    def test_overloaded_model_retryable(self):
        result = classify(RuntimeError("Model is overloaded, try again"))
        assert result.kind == ErrorKind.PROCESSING
        assert result.retryable

    @pytest.mark.unit
    def test_pydantic_error_is_validation(self):
        class Model(BaseModel):
            x: int

        with pytest.raises(Exception) as exc_info:
            Model.model_validate({"x": "not-int"})
        result = classify(exc_info.value)
        assert result.kind == ErrorKind.VALIDATION
        assert not result.retryable

    @pytest.mark.unit
    def test_unmatched_defaults_to_database(self):
        result = classify(RuntimeError("something odd happened"))
        assert result.kind == ErrorKind.DATABASE
        assert result.retryable is False

    @pytest.mark.unit
    def test_plain_value_error_defaults_to_database(self):
        result = classify(ValueError("max_iterations must be >= 0, got -1"))
        assert result.kind == ErrorKind.DATABASE
        assert result.retryable is False

    @pytest.mark.unit
    def test_validation_named_value_error(self):
        class DocumentValidationError(ValueError):
            pass

        result = classify(DocumentValidationError("element e1 out of bounds"))
        assert result.kind == ErrorKind.VALIDATION
        assert not result.retryable

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("status", "kind", "retryable"),
        [
            (500, ErrorKind.PROCESSING, True),
            (504, ErrorKind.PROCESSING, True),
            (429, ErrorKind.NETWORK, True),
            (408, ErrorKind.NETWORK, True),
            (401, ErrorKind.VALIDATION, False),
            (422, ErrorKind.VALIDATION, False),
        ],
    )
    def test_http_status_code_attribute(self, status, kind, retryable):
        class ServiceError(Exception):
            def __init__(self, message, status_code):
                super().__init__(message)
                self.status_code = status_code

        result = classify(ServiceError(f"Renderer returned {status}", status))
        assert result.kind == kind
        assert result.retryable is retryable

    @pytest.mark.unit
    def test_classified_error_passthrough(self):
        original = PipelineError("bad", kind=ErrorKind.VALIDATION)
        result = classify(original, {"step": "render"})
        assert result is original
        assert result.context["step"] == "render"

    @pytest.mark.unit
    def test_context_carries_error_type(self):
        result = classify(KeyError("missing"), {"operation": "lookup"})
        assert result.context["error_type"] == "KeyError"
        assert result.context["operation"] == "lookup"


# =============================================================================
# calculate_delay
# =============================================================================


class TestCalculateDelay:
    """Tests for backoff delay computation."""

    @pytest.mark.unit
    def test_exponential_growth(self):
        config = RetryConfig(base_delay=1.0, max_delay=100.0, jitter=False)
        assert calculate_delay(1, config) == 1.0
        assert calculate_delay(2, config) == 2.0
        assert calculate_delay(3, config) == 4.0

    @pytest.mark.unit
    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=False)
        assert calculate_delay(10, config) == 5.0

    @pytest.mark.unit
    def test_jitter_within_quarter(self):
        config = RetryConfig(base_delay=4.0, max_delay=100.0, jitter=True)
        rng = random.Random(7)
        for _ in range(50):
            delay = calculate_delay(1, config, rng)
            assert 3.0 <= delay <= 5.0

    @pytest.mark.unit
    def test_invalid_attempts_rejected(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryConfig(max_attempts=0)


# =============================================================================
# with_retry
# =============================================================================


class TestWithRetry:
    """Tests for classified retry."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_first_try(self, fast_retry):
        op = FlakyOperation(0, RuntimeError("timeout"))
        assert await with_retry(op, fast_retry) == "ok"
        assert op.calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_succeeds_after_retryable_failures(self, fast_retry):
        op = FlakyOperation(2, RuntimeError("connection reset"))
        assert await with_retry(op, fast_retry) == "ok"
        assert op.calls == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_error(self, fast_retry):
        error = RuntimeError("timeout talking to model")
        op = FlakyOperation(10, error)
        with pytest.raises(RuntimeError) as exc_info:
            await with_retry(op, fast_retry)
        assert exc_info.value is error
        assert op.calls == 3

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_validation_error_called_once(self, fast_retry):
        error = PipelineError("schema mismatch", kind=ErrorKind.VALIDATION)
        op = FlakyOperation(10, error)
        with pytest.raises(PipelineError):
            await with_retry(op, RetryConfig(max_attempts=7, base_delay=0.0))
        assert op.calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_storage_conflict_fails_fast(self, fast_retry):
        op = FlakyOperation(10, RuntimeError("object already exists"))
        with pytest.raises(RuntimeError):
            await with_retry(op, fast_retry, context={"component": "storage"})
        assert op.calls == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self, monkeypatch):
        delays: list[float] = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr("src.errors.lib.asyncio.sleep", fake_sleep)
        op = FlakyOperation(2, RuntimeError("503 service unavailable"))
        config = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=10.0, jitter=False)

        await with_retry(op, config)
        assert delays == [1.0, 2.0]


# =============================================================================
# with_cleanup
# =============================================================================


class TestWithCleanup:
    """Tests for compensating cleanup actions."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_success_skips_cleanups(self):
        ran: list[str] = []

        async def op():
            return 42

        result = await with_cleanup(op, [lambda: ran.append("cleanup")])
        assert result == 42
        assert ran == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_runs_all_and_reraises_original(self):
        ran: list[str] = []
        original = RuntimeError("upload failed")

        async def op():
            raise original

        def broken_cleanup():
            ran.append("first")
            raise OSError("cleanup broke")

        async def async_cleanup():
            ran.append("second")

        with pytest.raises(RuntimeError) as exc_info:
            await with_cleanup(op, [broken_cleanup, async_cleanup])

        assert exc_info.value is original
        assert ran == ["first", "second"]
