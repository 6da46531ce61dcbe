# sheet2chat/infra/metrics.py
"""
In-process counters and timing histograms, served as JSON on /metrics.

Keys are ``name{label=value,...}`` with labels sorted, so the same label set
always lands on the same series.
"""
from __future__ import annotations

import time
from collections import deque
from threading import Lock
from typing import Any, Deque, Dict, Mapping, Optional

from sheet2chat.infra.logging_config import get_logger

logger = get_logger(__name__)

# Histograms keep a sliding window so a long-lived process stays bounded
HISTOGRAM_WINDOW = 10_000


def series_key(name: str, labels: Optional[Mapping[str, Any]] = None) -> str:
    if not labels:
        return name
    rendered = ",".join(f"{key}={labels[key]}" for key in sorted(labels))
    return f"{name}{{{rendered}}}"


class Histogram:
    """Recent observations of one series (durations in seconds)"""

    def __init__(self, window: int = HISTOGRAM_WINDOW):
        self._samples: Deque[float] = deque(maxlen=window)

    def observe(self, value: float) -> None:
        self._samples.append(value)

    def get_stats(self) -> dict:
        ordered = sorted(self._samples)
        n = len(ordered)
        if n == 0:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0}

        def pick(fraction: float) -> float:
            return ordered[min(int(n * fraction), n - 1)]

        return {
            "count": n,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / n,
            "p95": pick(0.95),
            "p99": pick(0.99),
        }


class MetricsCollector:
    """Thread-safe registry of counters and histograms"""

    def __init__(self):
        self._counts: Dict[str, int] = {}
        self._histograms: Dict[str, Histogram] = {}
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: Optional[dict] = None) -> None:
        key = series_key(name, labels)
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + amount

    def observe_histogram(self, name: str, value: float, labels: Optional[dict] = None) -> None:
        key = series_key(name, labels)
        with self._lock:
            self._histograms.setdefault(key, Histogram()).observe(value)

    def get_counter(self, name: str, **labels) -> int:
        with self._lock:
            return self._counts.get(series_key(name, labels), 0)

    def get_metrics(self) -> dict:
        """Snapshot for the /metrics endpoint"""
        with self._lock:
            return {
                "counters": dict(self._counts),
                "histograms": {key: hist.get_stats() for key, hist in self._histograms.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
            self._histograms.clear()
        logger.debug("Metrics reset")


_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _collector


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _collector.inc_counter(name, amount, labels)


def observe_histogram(name: str, value: float, **labels) -> None:
    _collector.observe_histogram(name, value, labels)


class Timer:
    """``with Timer("x_seconds", op="y"):`` records elapsed time, even when the block raises"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self._started = 0.0

    def __enter__(self) -> "Timer":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        observe_histogram(self.metric_name, time.perf_counter() - self._started, **self.labels)


def _flag(value: bool) -> str:
    return "true" if value else "false"


class DispatchMetrics:
    """Named series for the notification pipeline"""

    @staticmethod
    def event_received(event_type: str) -> None:
        inc_counter("events_received_total", event_type=event_type)

    @staticmethod
    def notification(status: str) -> None:
        inc_counter("notifications_total", status=status)

    @staticmethod
    def task(status: str) -> None:
        inc_counter("tasks_total", status=status)

    @staticmethod
    def fallback_sent(ok: bool) -> None:
        inc_counter("task_fallback_messages_total", ok=_flag(ok))

    @staticmethod
    def error_reported(category: str, delivered: bool) -> None:
        inc_counter("error_reports_total", category=category, delivered=_flag(delivered))

    @staticmethod
    def tenant_resolved(kind: str) -> None:
        inc_counter("tenant_resolutions_total", kind=kind)

    @staticmethod
    def tenant_collision() -> None:
        inc_counter("tenant_resolution_collisions_total")

    @staticmethod
    def staff_match(matched: bool) -> None:
        inc_counter("staff_matches_total", matched=_flag(matched))

    @staticmethod
    def track_dispatch_time(event_type: str) -> Timer:
        return Timer("event_processing_seconds", event_type=event_type)
