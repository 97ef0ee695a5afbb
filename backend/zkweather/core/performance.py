"""
Performance monitor for proving engine operations

Tracks compilation and proof generation timings, process memory samples
and error counters. Nothing is persisted; reset() restores the initial state.
"""
import asyncio
import math
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional

import psutil

from zkweather.core.config import Settings, get_settings
from zkweather.core.logging_config import LoggingConfig
from zkweather.core.metrics import zk_memory_rss_bytes

logger = LoggingConfig.get_logger(__name__)

ERROR_KINDS = ("compilation", "proofGeneration", "setup")

_MB = 1024 * 1024


class TimingStats:
    """Running count / total / average / min / max of durations in ms"""

    def __init__(self):
        self.count = 0
        self.total_time = 0.0
        self.average_time = 0.0
        self.min_time = math.inf
        self.max_time = 0.0

    def record(self, time_ms: float):
        self.count += 1
        self.total_time += time_ms
        self.average_time = self.total_time / self.count
        self.min_time = min(self.min_time, time_ms)
        self.max_time = max(self.max_time, time_ms)

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "total_time": self.total_time,
            "average_time": self.average_time,
            "min_time": self.min_time,
            "max_time": self.max_time,
        }

    def report_lines(self) -> list:
        min_time = "N/A" if self.min_time == math.inf else f"{self.min_time:.2f}ms"
        return [
            f"  Count: {self.count}",
            f"  Total Time: {self.total_time:.2f}ms",
            f"  Average Time: {self.average_time:.2f}ms",
            f"  Min Time: {min_time}",
            f"  Max Time: {self.max_time:.2f}ms",
        ]


class PerformanceMonitor:
    """Process-wide accumulator of timing and memory statistics"""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings
        self._lock = threading.Lock()
        self._memory_task: Optional[asyncio.Task] = None
        self.reset()

    @property
    def settings(self) -> Settings:
        """Lazy load settings"""
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def reset(self):
        """Reset all metrics"""
        with self._lock:
            self._compilations = TimingStats()
            self._proof_generations = TimingStats()
            self._memory_current = 0
            self._memory_peak = 0
            self._memory_samples: Deque[int] = deque(maxlen=self.settings.memory_sample_limit)
            self._errors = {kind: 0 for kind in ERROR_KINDS}

    def record_compilation(self, time_ms: float):
        """Record compilation performance"""
        with self._lock:
            self._compilations.record(time_ms)
            count, average = self._compilations.count, self._compilations.average_time

        if self.settings.log_compilation_time:
            logger.info(f"Compilation #{count}: {time_ms:.2f}ms (avg: {average:.2f}ms)")

    def record_proof_generation(self, time_ms: float):
        """Record proof generation performance"""
        with self._lock:
            self._proof_generations.record(time_ms)
            count, average = self._proof_generations.count, self._proof_generations.average_time

        if self.settings.log_proof_generation_time:
            logger.info(f"Proof generation #{count}: {time_ms:.2f}ms (avg: {average:.2f}ms)")

        if time_ms > self.settings.max_execution_time_ms:
            logger.warning(
                f"Proof generation took {time_ms:.2f}ms, above the advisory limit of "
                f"{self.settings.max_execution_time_ms}ms"
            )

    def record_memory_usage(self, current: Optional[int] = None) -> int:
        """
        Record a memory sample

        Args:
            current: Bytes in use; sampled from the process RSS when omitted

        Returns:
            The recorded sample in bytes
        """
        if current is None:
            current = psutil.Process().memory_info().rss

        with self._lock:
            self._memory_current = current
            self._memory_peak = max(self._memory_peak, current)
            self._memory_samples.append(current)

        zk_memory_rss_bytes.set(current)

        if self.settings.log_memory_usage:
            logger.debug(f"Memory usage: {current / _MB:.2f}MB")

        if current > self.settings.max_memory_mb * _MB:
            logger.warning(
                f"Memory usage {current / _MB:.2f}MB is above the advisory limit of "
                f"{self.settings.max_memory_mb}MB"
            )
        return current

    def record_error(self, error_type: str):
        """Record error occurrence (compilation, proofGeneration or setup)"""
        if error_type not in ERROR_KINDS:
            raise ValueError(f"Unknown error type: {error_type}")
        with self._lock:
            self._errors[error_type] += 1

    def get_metrics(self) -> Dict[str, Any]:
        """Get a snapshot of the current metrics"""
        with self._lock:
            return {
                "compilations": self._compilations.to_dict(),
                "proof_generations": self._proof_generations.to_dict(),
                "memory_usage": {
                    "current": self._memory_current,
                    "peak": self._memory_peak,
                    "samples": list(self._memory_samples),
                },
                "errors": {
                    "compilation_errors": self._errors["compilation"],
                    "proof_generation_errors": self._errors["proofGeneration"],
                    "setup_errors": self._errors["setup"],
                },
            }

    def get_report(self) -> str:
        """Get formatted metrics report"""
        with self._lock:
            lines = [
                "ZoKrates Performance Report",
                "===========================",
                "",
                "Compilations:",
                *self._compilations.report_lines(),
                "",
                "Proof Generations:",
                *self._proof_generations.report_lines(),
                "",
                "Memory Usage:",
                f"  Current: {self._memory_current / _MB:.2f}MB",
                f"  Peak: {self._memory_peak / _MB:.2f}MB",
                f"  Samples: {len(self._memory_samples)}",
                "",
                "Errors:",
                f"  Compilation Errors: {self._errors['compilation']}",
                f"  Proof Generation Errors: {self._errors['proofGeneration']}",
                f"  Setup Errors: {self._errors['setup']}",
            ]
        return "\n".join(lines) + "\n"

    def start_memory_monitoring(self, interval_ms: Optional[int] = None) -> Optional[asyncio.Task]:
        """
        Start sampling memory usage at intervals on the running event loop

        Returns the sampling task, or None when monitoring is disabled.
        """
        if not self.settings.performance_monitoring_enabled:
            return None
        if self._memory_task is not None and not self._memory_task.done():
            return self._memory_task

        interval = (interval_ms or self.settings.memory_monitor_interval_ms) / 1000

        async def _sample():
            while True:
                self.record_memory_usage()
                await asyncio.sleep(interval)

        self._memory_task = asyncio.get_running_loop().create_task(_sample())
        return self._memory_task

    def stop_memory_monitoring(self):
        if self._memory_task is not None:
            self._memory_task.cancel()
            self._memory_task = None
