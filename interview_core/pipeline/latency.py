"""
Latency Tracking Module.

Collects one measurement per provider attempt and answers rolling-window
statistics per stage and provider. The tracker is the telemetry sink the
failover invoker reports to; recording never blocks the pipeline.
"""

import asyncio
import logging
import statistics
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


SLOW_OPERATION_MS = 5000.0


class TelemetrySink(ABC):
    """Receives latency reports for provider attempts."""

    @abstractmethod
    async def record(
        self,
        stage: str,
        provider: str,
        outcome: str,
        duration_ms: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record one attempt."""
        pass


@dataclass
class LatencyMeasurement:
    """A single latency measurement."""

    stage: str
    provider: str
    outcome: str
    value_ms: float
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome == "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "provider": self.provider,
            "outcome": self.outcome,
            "latency_ms": round(self.value_ms, 2),
            "timestamp": self.timestamp,
            "metadata": self.metadata,
        }


@dataclass
class LatencyStats:
    """Statistical summary of latency measurements."""

    stage: str
    provider: str = "all"
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0
    avg_ms: float = 0.0
    stddev_ms: float = 0.0
    p50_ms: float = 0.0
    p95_ms: float = 0.0
    p99_ms: float = 0.0
    success_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stage": self.stage,
            "provider": self.provider,
            "count": self.count,
            "total_ms": round(self.total_ms, 2),
            "min_ms": round(self.min_ms, 2) if self.min_ms != float("inf") else None,
            "max_ms": round(self.max_ms, 2),
            "avg_ms": round(self.avg_ms, 2),
            "stddev_ms": round(self.stddev_ms, 2),
            "p50_ms": round(self.p50_ms, 2),
            "p95_ms": round(self.p95_ms, 2),
            "p99_ms": round(self.p99_ms, 2),
            "success_rate": round(self.success_rate, 2),
        }


class LatencyTracker(TelemetrySink):
    """
    Rolling-window latency tracker.

    Features:
    - Keeps the last ``window_size`` measurements
    - Percentile calculations (p50, p95, p99) per stage and provider
    - Success rate per stage and provider
    - Warning log for operations slower than 5 seconds
    """

    def __init__(
        self,
        window_size: int = 1000,
        slow_threshold_ms: float = SLOW_OPERATION_MS,
    ):
        """
        Initialize latency tracker.

        Args:
            window_size: Number of measurements to keep in rolling window
            slow_threshold_ms: Latency above which an operation is logged as slow
        """
        self._window_size = window_size
        self._slow_threshold_ms = slow_threshold_ms
        self._measurements: Deque[LatencyMeasurement] = deque(maxlen=window_size)
        self._lock = asyncio.Lock()

    async def record(
        self,
        stage: str,
        provider: str,
        outcome: str,
        duration_ms: float,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a latency measurement."""
        measurement = LatencyMeasurement(
            stage=stage,
            provider=provider,
            outcome=outcome,
            value_ms=duration_ms,
            metadata=metadata or {},
        )

        async with self._lock:
            self._measurements.append(measurement)

        if measurement.success:
            logger.info(f"[Latency] {provider}:{stage} {duration_ms:.0f}ms")
        else:
            logger.warning(f"[Latency] {provider}:{stage} {outcome} after {duration_ms:.0f}ms")

        if duration_ms > self._slow_threshold_ms:
            logger.warning(
                f"Slow operation detected: {provider}:{stage} took {duration_ms:.0f}ms"
            )

    async def get_stats(
        self,
        stage: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> Optional[LatencyStats]:
        """Get statistics, optionally filtered by stage and provider."""
        async with self._lock:
            measurements = [
                m for m in self._measurements
                if (stage is None or m.stage == stage)
                and (provider is None or m.provider == provider)
            ]

        if not measurements:
            return None

        values = sorted(m.value_ms for m in measurements)
        n = len(values)
        successes = sum(1 for m in measurements if m.success)

        return LatencyStats(
            stage=stage or "all",
            provider=provider or "all",
            count=n,
            total_ms=sum(values),
            min_ms=values[0],
            max_ms=values[-1],
            avg_ms=statistics.mean(values),
            stddev_ms=statistics.stdev(values) if n > 1 else 0.0,
            p50_ms=self._percentile(values, 50),
            p95_ms=self._percentile(values, 95),
            p99_ms=self._percentile(values, 99),
            success_rate=successes / n,
        )

    @staticmethod
    def _percentile(sorted_values: List[float], p: int) -> float:
        """Calculate percentile from sorted values."""
        if not sorted_values:
            return 0.0

        n = len(sorted_values)
        idx = (n - 1) * p / 100

        lower = int(idx)
        upper = lower + 1
        weight = idx - lower

        if upper >= n:
            return sorted_values[-1]

        return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight

    async def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all latency metrics grouped by stage and provider."""
        async with self._lock:
            keys = sorted({(m.stage, m.provider) for m in self._measurements})

        stages: Dict[str, Dict[str, Any]] = {}
        for stage, provider in keys:
            stats = await self.get_stats(stage, provider)
            if stats:
                stages.setdefault(stage, {})[provider] = stats.to_dict()

        overall = await self.get_stats()
        return {
            "window_size": self._window_size,
            "overall": overall.to_dict() if overall else None,
            "stages": stages,
        }

    async def get_recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Get the most recent measurements."""
        async with self._lock:
            recent = list(self._measurements)[-limit:]
        return [m.to_dict() for m in recent]

    async def reset(self) -> None:
        """Reset all measurements."""
        async with self._lock:
            self._measurements.clear()
