"""Wall-clock instrumentation for named operations.

``OperationMonitor`` keeps a bounded FIFO of durations per operation name and
emits a warning when a measured duration exceeds the operation's threshold.
Timing never changes control flow: results are returned and exceptions
re-raised exactly as the measured callable produced them.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .constants import (
    OP_DIAGNOSTIC_PROCESSING,
    OP_PROTOCOL_RESPONSE,
    PERFORMANCE_THRESHOLDS_MS,
)

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_METRICS_HISTORY = 100


@dataclass(slots=True)
class OperationStats:
    count: int
    average: float
    min: float
    max: float
    total: float

    def to_dict(self) -> dict[str, float | int]:
        return {
            "count": self.count,
            "average": self.average,
            "min": self.min,
            "max": self.max,
            "total": self.total,
        }


class OperationMonitor:
    def __init__(
        self,
        *,
        enable_logging: bool = True,
        max_metrics_history: int = DEFAULT_MAX_METRICS_HISTORY,
        custom_thresholds: dict[str, float] | None = None,
    ) -> None:
        self.enable_logging = bool(enable_logging)
        self.max_metrics_history = max(1, int(max_metrics_history))
        self._custom_thresholds = {
            name: float(value)
            for name, value in (custom_thresholds or {}).items()
            if isinstance(value, (int, float)) and value > 0
        }
        self._metrics: dict[str, deque[float]] = {}
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # -- measurement -----------------------------------------------------------

    def measure(self, operation: str, fn: Callable[[], T]) -> T:
        if self._disposed:
            return fn()
        start = time.perf_counter()
        try:
            return fn()
        finally:
            self._record(operation, (time.perf_counter() - start) * 1000.0)

    async def measure_async(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        if self._disposed:
            return await fn()
        start = time.perf_counter()
        try:
            return await fn()
        finally:
            self._record(operation, (time.perf_counter() - start) * 1000.0)

    def record_diagnostic_processing(self, fn: Callable[[], T]) -> T:
        return self.measure(OP_DIAGNOSTIC_PROCESSING, fn)

    def record_protocol_response(self, fn: Callable[[], T]) -> T:
        return self.measure(OP_PROTOCOL_RESPONSE, fn)

    # -- aggregates ------------------------------------------------------------

    def get_metrics(self) -> dict[str, list[float]]:
        return {name: list(series) for name, series in self._metrics.items()}

    def get_average_time(self, operation: str) -> float | None:
        series = self._metrics.get(operation)
        if not series:
            return None
        return sum(series) / len(series)

    def get_min_time(self, operation: str) -> float | None:
        series = self._metrics.get(operation)
        return min(series) if series else None

    def get_max_time(self, operation: str) -> float | None:
        series = self._metrics.get(operation)
        return max(series) if series else None

    def get_performance_summary(self) -> dict[str, OperationStats]:
        summary: dict[str, OperationStats] = {}
        for name, series in self._metrics.items():
            if not series:
                continue
            total = sum(series)
            summary[name] = OperationStats(
                count=len(series),
                average=total / len(series),
                min=min(series),
                max=max(series),
                total=total,
            )
        return summary

    def threshold_for(self, operation: str) -> float | None:
        if operation in self._custom_thresholds:
            return self._custom_thresholds[operation]
        return PERFORMANCE_THRESHOLDS_MS.get(operation)

    def dispose(self) -> None:
        self._disposed = True
        self._metrics.clear()

    # -- internals -------------------------------------------------------------

    def _record(self, operation: str, duration_ms: float) -> None:
        if self._disposed:
            return
        series = self._metrics.get(operation)
        if series is None:
            series = deque(maxlen=self.max_metrics_history)
            self._metrics[operation] = series
        series.append(duration_ms)
        self._check_threshold(operation, duration_ms)

    def _check_threshold(self, operation: str, duration_ms: float) -> None:
        if not self.enable_logging:
            return
        threshold = self.threshold_for(operation)
        if threshold is not None and duration_ms > threshold:
            LOGGER.warning(
                "Performance warning: %s took %.1fms (threshold: %sms)",
                operation,
                duration_ms,
                threshold,
            )
