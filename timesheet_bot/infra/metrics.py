from __future__ import annotations
import time
from collections import defaultdict, deque
from threading import Lock
from dataclasses import dataclass, field
from timesheet_bot.infra.logging_config import get_logger

logger = get_logger(__name__)

_HISTOGRAM_WINDOW = 1000  # keep the latest N observations per series


@dataclass
class Counter:
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


@dataclass
class Histogram:
    """Rolling distribution of recent values (e.g. dispatch durations)"""
    values: deque = field(default_factory=lambda: deque(maxlen=_HISTOGRAM_WINDOW))

    def observe(self, value: float) -> None:
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.values:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0}

        ordered = sorted(self.values)
        count = len(ordered)
        return {
            "count": count,
            "min": ordered[0],
            "max": ordered[-1],
            "avg": sum(ordered) / count,
            "p95": ordered[min(int(count * 0.95), count - 1)],
        }


class MetricsCollector:
    """
    Process-local metrics registry.
    Counters and histograms are keyed by ``name{label=value,...}``.
    """

    def __init__(self):
        self._counters: dict[str, Counter] = defaultdict(Counter)
        self._histograms: dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_counter(self, name: str, labels: dict | None = None) -> int:
        key = self._make_key(name, labels)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter else 0

    def get_metrics(self) -> dict:
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {"counters": counters, "histograms": histograms}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager recording elapsed seconds into a histogram"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            observe_histogram(self.metric_name, time.monotonic() - self.start_time, **self.labels)


class AppMetrics:
    """Domain-level metrics"""

    @staticmethod
    def event_received(kind: str) -> None:
        inc_counter("inbound_events_total", kind=kind)

    @staticmethod
    def search_performed(tokens: int, results: int) -> None:
        inc_counter("worker_searches_total", tokens="multi" if tokens > 1 else "single")
        if results == 0:
            inc_counter("worker_searches_empty_total")

    @staticmethod
    def worker_linked() -> None:
        inc_counter("worker_links_total")

    @staticmethod
    def worker_unlinked() -> None:
        inc_counter("worker_unlinks_total")

    @staticmethod
    def dispatch_sent(trigger: str) -> None:
        inc_counter("dispatch_messages_total", trigger=trigger, status="sent")

    @staticmethod
    def dispatch_failed(trigger: str) -> None:
        inc_counter("dispatch_messages_total", trigger=trigger, status="failed")

    @staticmethod
    def dispute_created(kind: str) -> None:
        inc_counter("disputes_created_total", kind=kind)

    @staticmethod
    def session_expired() -> None:
        inc_counter("sessions_expired_total")

    @staticmethod
    def store_error(operation: str) -> None:
        inc_counter("store_errors_total", operation=operation)

    @staticmethod
    def track_event_time(kind: str) -> Timer:
        return Timer("event_processing_seconds", kind=kind)

    @staticmethod
    def track_dispatch_time(trigger: str) -> Timer:
        return Timer("dispatch_send_seconds", trigger=trigger)
