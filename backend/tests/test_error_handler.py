"""
Tests for ErrorHandler retry logic and error classification
"""
import time
from unittest.mock import AsyncMock

import pytest
from zkweather.core.config import COMPILE, GENERATE_PROOF, SETUP, RetryPolicy
from zkweather.core.error_handler import (DEFAULT_CLAUSE, ErrorHandler,
                                          create_user_friendly_message,
                                          handle_environment_error,
                                          handle_memory_error,
                                          is_retryable_error)
from zkweather.core.exceptions import (EngineInitializationError,
                                       RetryExhaustedError, ZKWeatherError)


@pytest.fixture
def handler(settings):
    return ErrorHandler(settings)


@pytest.mark.asyncio
async def test_with_retry_returns_first_success(handler):
    operation = AsyncMock(return_value="ok")
    assert await handler.with_retry(operation, COMPILE) == "ok"
    assert operation.await_count == 1
    assert handler.get_error_stats()["total"] == 0


@pytest.mark.asyncio
async def test_with_retry_recovers_after_failures(handler):
    """Test k < max attempts failures followed by success"""
    operation = AsyncMock(side_effect=[RuntimeError("boom"), RuntimeError("boom again"), "done"])
    result = await handler.with_retry(operation, SETUP)

    assert result == "done"
    assert operation.await_count == 3
    records = handler.get_errors(SETUP)
    assert [r.attempt for r in records] == [1, 2]
    assert records[1].message == "boom again"


@pytest.mark.asyncio
async def test_with_retry_exhausted(handler):
    """Test an always failing operation is attempted exactly max times"""
    operation = AsyncMock(side_effect=RuntimeError("witness mismatch"))
    policy = RetryPolicy(max_attempts=3, delays_ms=[1, 1, 1])

    start = time.perf_counter()
    with pytest.raises(RetryExhaustedError) as exc_info:
        await handler.with_retry(operation, GENERATE_PROOF, policy=policy)
    elapsed_ms = (time.perf_counter() - start) * 1000

    assert operation.await_count == 3
    assert len(handler.get_errors(GENERATE_PROOF)) == 3
    message = str(exc_info.value)
    assert GENERATE_PROOF in message
    assert "3 attempts" in message
    assert "witness mismatch" in message
    assert exc_info.value.attempts == 3
    # Two backoff sleeps of 1ms between three attempts
    assert elapsed_ms >= 1


@pytest.mark.asyncio
async def test_with_retry_max_retries_override(handler):
    operation = AsyncMock(side_effect=RuntimeError("nope"))
    with pytest.raises(RetryExhaustedError, match="failed after 1 attempts"):
        await handler.with_retry(operation, COMPILE, max_retries=1)
    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_non_retryable_errors_still_retried(handler):
    """Test classification does not short-circuit retries"""
    error = ValueError("syntax error in circuit")
    assert not is_retryable_error(error)
    operation = AsyncMock(side_effect=error)
    with pytest.raises(RetryExhaustedError):
        await handler.with_retry(operation, COMPILE)
    assert operation.await_count == 3


def test_error_log_bounded(settings):
    settings.error_log_size = 5
    handler = ErrorHandler(settings)
    for attempt in range(1, 8):
        handler.log_error(RuntimeError(f"error {attempt}"), COMPILE, attempt)

    errors = handler.get_errors()
    assert len(errors) == 5
    assert errors[0].message == "error 3"
    assert errors[-1].message == "error 7"


def test_error_stats(handler):
    for attempt in range(1, 13):
        handler.log_error(RuntimeError("compile failed"), COMPILE, attempt)
    handler.log_error(RuntimeError("setup failed"), SETUP, 1)

    stats = handler.get_error_stats()
    assert stats["total"] == 13
    assert stats["by_operation"] == {COMPILE: 12, SETUP: 1}
    assert len(stats["recent"]) == 10
    assert stats["recent"][-1].operation == SETUP


def test_error_record_context(handler):
    record = handler.log_error(TimeoutError("connection timeout"), GENERATE_PROOF, 2, {"circuit": "weather-model"})
    assert record.context["retryable"] is True
    assert record.context["circuit"] == "weather-model"
    assert "pid" in record.context
    assert record.stack is not None
    assert record.to_dict()["attempt"] == 2


def test_clear_errors(handler):
    handler.log_error(RuntimeError("x"), COMPILE, 1)
    handler.clear_errors()
    assert handler.get_error_stats() == {"total": 0, "by_operation": {}, "recent": []}


def test_error_report(handler):
    handler.log_error(RuntimeError("bad witness"), GENERATE_PROOF, 1)
    report = handler.get_error_report()
    assert "Total Errors: 1" in report
    assert f"  {GENERATE_PROOF}: 1" in report
    assert "bad witness" in report


@pytest.mark.parametrize("message,expected", [
    ("Request timeout", True),
    ("network unreachable", True),
    ("Connection reset", True),
    ("temporary failure", True),
    ("rate limit exceeded", True),
    ("503 Service Unavailable", True),
    ("syntax error", False),
])
def test_is_retryable_error(message, expected):
    assert is_retryable_error(RuntimeError(message)) is expected


@pytest.mark.parametrize("message,clause", [
    ("operation timeout", "The operation took too long to complete."),
    ("out of memory", "Insufficient memory available."),
    ("syntax error at line 3", "There may be a syntax error in the circuit code."),
    ("witness computation failed", "Invalid witness data provided."),
    ("something odd", DEFAULT_CLAUSE),
])
def test_user_friendly_message_clauses(message, clause):
    result = create_user_friendly_message(RuntimeError(message), COMPILE)
    assert result == f"Failed to compile ZoKrates circuit. {clause}"


def test_user_friendly_message_first_match_wins():
    result = create_user_friendly_message(RuntimeError("timeout while allocating memory"), SETUP)
    assert result.startswith("Failed to generate proving and verification keys.")
    assert result.endswith("The operation took too long to complete.")


def test_handle_environment_error():
    rewritten = handle_environment_error(FileNotFoundError("ZoKrates executable not found: zokrates"))
    assert isinstance(rewritten, EngineInitializationError)
    assert "ZOKRATES_BINARY" in str(rewritten)

    other = RuntimeError("unrelated")
    assert handle_environment_error(other) is other


def test_handle_memory_error():
    rewritten = handle_memory_error(RuntimeError("JavaScript heap out of memory"))
    assert isinstance(rewritten, ZKWeatherError)
    assert "Insufficient memory" in str(rewritten)
    assert isinstance(handle_memory_error(MemoryError()), ZKWeatherError)

    other = RuntimeError("unrelated")
    assert handle_memory_error(other) is other
