"""
In-memory run metrics.

One process-wide collector counts decisions, executed steps (overall and
per tool), tool failures, completed pages and background failures, and
keeps latency statistics. The CLI prints a summary when a session ends.
"""

import threading
import time
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass
from typing import ClassVar, Iterator


@dataclass
class LatencyStats:
    """Running count/min/max/mean of observed durations in milliseconds."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms or 0.0, 2),
            "max_ms": round(self.max_ms, 2),
        }


class Metrics:
    """
    Process-wide metrics collector.

    Background tasks and the primary loop share it, so every access holds
    the lock.

    Example:
        >>> Metrics.get().increment("steps_executed")
        >>> with Metrics.get().timer("decision_latency_ms"):
        ...     decision = await client.decide_next_action(request)
    """

    _instance: ClassVar["Metrics | None"] = None

    def __init__(self) -> None:
        self._counters: Counter[str] = Counter()
        self._latencies: dict[str, LatencyStats] = {}
        self._lock = threading.Lock()

    @classmethod
    def get(cls) -> "Metrics":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Drop the collector; the next get() starts from zero."""
        cls._instance = None

    def increment(self, name: str, value: int = 1) -> int:
        with self._lock:
            self._counters[name] += value
            return self._counters[name]

    def get_counter(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def observe(self, name: str, duration_ms: float) -> None:
        with self._lock:
            self._latencies.setdefault(name, LatencyStats()).add(duration_ms)

    def get_latency(self, name: str) -> LatencyStats | None:
        with self._lock:
            stats = self._latencies.get(name)
            return LatencyStats(**vars(stats)) if stats else None

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - started) * 1000)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "timings": {name: stats.to_dict() for name, stats in self._latencies.items()},
            }


# Named hooks used by the exploration loop, the background runner and the tools

def increment_steps_executed(tool: str) -> None:
    metrics = Metrics.get()
    metrics.increment("steps_executed")
    metrics.increment(f"steps_{tool}")


def increment_tool_failures() -> None:
    Metrics.get().increment("tool_failures")


def increment_pages_completed() -> None:
    Metrics.get().increment("pages_completed")


def increment_background_failures() -> None:
    Metrics.get().increment("background_failures")


@contextmanager
def time_decision() -> Iterator[None]:
    """Count a decision request and record its latency."""
    metrics = Metrics.get()
    metrics.increment("decisions_requested")
    with metrics.timer("decision_latency_ms"):
        yield
