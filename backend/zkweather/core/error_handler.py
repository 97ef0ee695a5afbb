"""
Error handling and retry logic for proving engine operations
"""
import asyncio
import os
import platform
import threading
import time
import traceback
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar

from zkweather.core.config import (COMPILE, EXPORT_VERIFIER, GENERATE_PROOF,
                                   SETUP, RetryPolicy, Settings, get_settings)
from zkweather.core.exceptions import (EngineInitializationError,
                                       RetryExhaustedError, ZKWeatherError)
from zkweather.core.logging_config import LoggingConfig
from zkweather.core.metrics import zk_operation_errors_total, zk_retries_total

logger = LoggingConfig.get_logger(__name__)

T = TypeVar('T')

RECENT_ERRORS_LIMIT = 10

# Substrings that mark an error as transient (advisory only)
RETRYABLE_PATTERNS = [
    "timeout",
    "network",
    "connection",
    "temporary",
    "rate limit",
    "service unavailable",
]

OPERATION_MESSAGES = {
    COMPILE: "Failed to compile ZoKrates circuit",
    SETUP: "Failed to generate proving and verification keys",
    GENERATE_PROOF: "Failed to generate zero-knowledge proof",
    EXPORT_VERIFIER: "Failed to export Solidity verifier contract",
}

# First match wins
DETAIL_CLAUSES = [
    ("timeout", "The operation took too long to complete."),
    ("memory", "Insufficient memory available."),
    ("syntax", "There may be a syntax error in the circuit code."),
    ("witness", "Invalid witness data provided."),
]
DEFAULT_CLAUSE = "Please check the logs for detailed error information."

ENVIRONMENT_PATTERNS = [
    "not supported",
    "unsupported",
    "exec format error",
    "no such file or directory",
    "executable not found",
]

MEMORY_PATTERNS = ["memory", "heap"]


class ErrorRecord:
    """A single failed attempt of an operation"""

    def __init__(
        self,
        message: str,
        operation: str,
        attempt: int,
        code: Optional[str] = None,
        stack: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        timestamp: Optional[float] = None
    ):
        self.message = message
        self.operation = operation
        self.attempt = attempt
        self.code = code
        self.stack = stack
        self.context = context or {}
        self.timestamp = timestamp if timestamp is not None else time.time() * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "stack": self.stack,
            "context": self.context,
            "timestamp": self.timestamp,
            "operation": self.operation,
            "attempt": self.attempt,
        }

    def __repr__(self) -> str:
        return f"ErrorRecord(operation={self.operation!r}, attempt={self.attempt}, message={self.message!r})"


def _error_message(error: BaseException) -> str:
    message = str(error)
    return message if message else type(error).__name__


def _error_code(error: BaseException) -> Optional[str]:
    code = getattr(error, "code", None)
    if code is None and isinstance(error, OSError) and error.errno is not None:
        code = error.errno
    return str(code) if code is not None else None


def is_retryable_error(error: BaseException) -> bool:
    """Check if an error looks transient"""
    message = _error_message(error).lower()
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def create_user_friendly_message(error: BaseException, operation: str) -> str:
    """Describe a failed operation in plain words"""
    base = OPERATION_MESSAGES.get(operation, f"Operation {operation} failed")
    message = _error_message(error).lower()
    for needle, clause in DETAIL_CLAUSES:
        if needle in message:
            return f"{base}. {clause}"
    return f"{base}. {DEFAULT_CLAUSE}"


def handle_environment_error(error: BaseException) -> BaseException:
    """Rewrite an unsupported-environment failure into an actionable error"""
    message = _error_message(error).lower()
    if any(pattern in message for pattern in ENVIRONMENT_PATTERNS):
        return EngineInitializationError(
            "The proving backend is not supported or failed to initialize in this environment. "
            "Ensure the ZoKrates CLI is installed and on PATH (or set ZOKRATES_BINARY) and try again."
        )
    return error


def handle_memory_error(error: BaseException) -> BaseException:
    """Rewrite a memory exhaustion failure into an actionable error"""
    if isinstance(error, MemoryError):
        matched = True
    else:
        message = _error_message(error).lower()
        matched = any(pattern in message for pattern in MEMORY_PATTERNS)
    if matched:
        return ZKWeatherError(
            "Insufficient memory for ZoKrates operation. "
            "Try reducing the circuit size or freeing memory held by other processes."
        )
    return error


class ErrorHandler:
    """
    Retry executor with a bounded in-memory error log

    Every failure type is retried up to the attempt limit; retryability
    classification is recorded for telemetry only.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings
        self._lock = threading.Lock()
        self._error_log: Deque[ErrorRecord] = deque(maxlen=self.settings.error_log_size)

    @property
    def settings(self) -> Settings:
        """Lazy load settings"""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_type: str,
        max_retries: Optional[int] = None,
        policy: Optional[RetryPolicy] = None
    ) -> T:
        """
        Execute operation with retry logic

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            operation_type: Operation kind (compile, setup, generateProof, ...)
            max_retries: Attempt limit (overrides the policy)
            policy: Retry policy (defaults to the configured policy for operation_type)

        Returns:
            The value of the first successful attempt

        Raises:
            RetryExhaustedError: when every attempt failed
        """
        policy = policy or self.settings.retry_policy(operation_type)
        attempts = max_retries if max_retries is not None else policy.max_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                self.log_error(e, operation_type, attempt)

                if attempt < attempts:
                    delay = policy.delay_for_attempt(attempt)
                    logger.info(
                        f"Retrying {operation_type} in {delay}ms (attempt {attempt + 1}/{attempts})"
                    )
                    zk_retries_total.labels(operation=operation_type).inc()
                    await asyncio.sleep(delay / 1000)

        raise RetryExhaustedError(operation_type, attempts, last_error)

    def log_error(
        self,
        error: BaseException,
        operation: str,
        attempt: int,
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorRecord:
        """Append an error record for a failed attempt"""
        retryable = is_retryable_error(error)
        record = ErrorRecord(
            message=_error_message(error),
            operation=operation,
            attempt=attempt,
            code=_error_code(error),
            stack=(
                "".join(traceback.format_exception(type(error), error, error.__traceback__))
                if self.settings.enable_detailed_errors else None
            ),
            context={
                "runtime": f"Python {platform.python_version()}",
                "pid": os.getpid(),
                "retryable": retryable,
                **(context or {}),
            },
        )

        with self._lock:
            self._error_log.append(record)

        zk_operation_errors_total.labels(
            operation=operation, retryable=str(retryable).lower()
        ).inc()
        logger.error(f"{operation} error (attempt {attempt}): {record.message}")
        return record

    def get_error_stats(self) -> Dict[str, Any]:
        """
        Get error statistics

        Returns:
            Dict with total count, count per operation kind and the most recent records
        """
        with self._lock:
            records = list(self._error_log)

        by_operation: Dict[str, int] = {}
        for record in records:
            by_operation[record.operation] = by_operation.get(record.operation, 0) + 1

        return {
            "total": len(records),
            "by_operation": by_operation,
            "recent": records[-RECENT_ERRORS_LIMIT:],
        }

    def get_errors(self, operation: Optional[str] = None) -> List[ErrorRecord]:
        with self._lock:
            records = list(self._error_log)
        if operation is None:
            return records
        return [r for r in records if r.operation == operation]

    def clear_errors(self):
        with self._lock:
            self._error_log.clear()

    def get_error_report(self) -> str:
        """Get formatted error report"""
        stats = self.get_error_stats()
        lines = [
            "ZoKrates Error Report",
            "=====================",
            "",
            f"Total Errors: {stats['total']}",
            "",
            "Errors by Operation:",
        ]
        for operation, count in sorted(stats["by_operation"].items()):
            lines.append(f"  {operation}: {count}")

        if stats["recent"]:
            lines.append("")
            lines.append("Recent Errors:")
            for index, record in enumerate(stats["recent"], start=1):
                when = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.timestamp / 1000))
                lines.append(f"  {index}. [{record.operation}] {record.message} ({when})")

        return "\n".join(lines) + "\n"
