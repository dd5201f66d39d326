"""
Colloquy Metrics — in-process metrics collector.

Counters, rolling-window histograms and gauges, with optional labels.
Nothing is exported; callers read snapshot() (the CLI's /stats does).

Usage:
    from colloquy.core.metrics import metrics

    metrics.inc("chat.turns", labels={"strategy": "streaming"})
    metrics.observe("chat.turn_ms", 842.0)
    metrics.gauge_set("persistence.pending", 1)
"""

from __future__ import annotations

import time
from collections import defaultdict


class MetricsCollector:
    """Counters, histograms and gauges kept in memory."""

    HISTOGRAM_MAX_SAMPLES = 500

    _instance: "MetricsCollector | None" = None

    @classmethod
    def get(cls) -> "MetricsCollector":
        """Return the process-wide singleton."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)
        self._gauges: dict[str, float] = defaultdict(float)
        self._started_at: float = time.time()

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        self._counters[self._key(name, labels)] += value

    def count(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        """Record one observation; the oldest sample drops once the window is full."""
        samples = self._histograms[self._key(name, labels)]
        samples.append(value)
        if len(samples) > self.HISTOGRAM_MAX_SAMPLES:
            samples.pop(0)

    def gauge_set(self, name: str, value: float, labels: dict | None = None) -> None:
        self._gauges[self._key(name, labels)] = value

    def gauge_inc(
        self, name: str, value: float = 1.0, labels: dict | None = None
    ) -> None:
        self._gauges[self._key(name, labels)] += value

    def gauge_dec(
        self, name: str, value: float = 1.0, labels: dict | None = None
    ) -> None:
        self._gauges[self._key(name, labels)] -= value

    def percentile(self, name: str, p: float) -> float | None:
        """Percentile (0-100) aggregated across all label variants of a histogram."""
        all_samples: list[float] = []
        prefix = name + "{"
        for key, samples in self._histograms.items():
            if key == name or key.startswith(prefix):
                all_samples.extend(samples)
        if not all_samples:
            return None
        ordered = sorted(all_samples)
        return ordered[min(int(len(ordered) * p / 100), len(ordered) - 1)]

    def snapshot(self) -> dict:
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
            }

        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    def reset(self) -> None:
        self._counters.clear()
        self._histograms.clear()
        self._gauges.clear()

    def _key(self, name: str, labels: dict | None) -> str:
        """Example: "strategy.calls{type=structured}"."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Process-wide singleton: import this directly
metrics = MetricsCollector.get()
