"""
In-process metrics for the tagging service.

Thread-safe counters and duration histograms for cache behaviour, provider
lookups, tag edits and task runs. Exposed as JSON on /metrics.
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Any, Optional


@dataclass
class Histogram:
    """Running count/total/min/max of observed values (not thread-safe by itself)."""
    count: int = 0
    total: float = 0.0
    min: float = float('inf')
    max: float = 0.0

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.min = min(self.min, value)
        self.max = max(self.max, value)

    def stats(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": round(self.total / self.count, 2) if self.count else 0.0,
            "min": round(self.min, 2) if self.count else 0.0,
            "max": round(self.max, 2),
        }


class Metrics:
    """
    Thread-safe metrics collector.

    Usage:
        metrics.inc("metadata_cache", labels={"result": "hit"})

        with metrics.timer("update_task_ms"):
            run_sweep()

        stats = metrics.get_stats()
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counters: Dict[str, int] = {}
        self._histograms: Dict[str, Histogram] = {}

    @staticmethod
    def _make_key(name: str, labels: Optional[Dict[str, str]] = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def inc(self, name: str, amount: int = 1, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter."""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Record a histogram observation."""
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms.setdefault(key, Histogram()).observe(value)

    @contextmanager
    def timer(self, name: str, labels: Optional[Dict[str, str]] = None):
        """Time the enclosed block in milliseconds, even if it raises."""
        start = time.monotonic()
        try:
            yield
        finally:
            self.observe(name, (time.monotonic() - start) * 1000, labels)

    def get_counter(self, name: str, labels: Optional[Dict[str, str]] = None) -> int:
        with self._lock:
            return self._counters.get(self._make_key(name, labels), 0)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self._counters),
                "histograms": {k: h.stats() for k, h in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()


# Global instance
metrics = Metrics()
