"""In-process labelled counters and histograms for order processing."""

import bisect
import threading
from collections import defaultdict

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class CounterVec:
    """Monotonic counters keyed by one label value."""

    def __init__(self, name, help_text=""):
        self.name = name
        self.help_text = help_text
        self._values = defaultdict(float)
        self._lock = threading.Lock()

    def inc(self, label, amount=1.0):
        """Add a non-negative amount to the counter for label."""
        if amount < 0:
            raise ValueError("counter cannot decrease")
        with self._lock:
            self._values[label] += amount

    def value(self, label):
        """Current value for label; zero if never incremented."""
        with self._lock:
            return self._values.get(label, 0.0)


class HistogramVec:
    """Histograms of observations keyed by one label value."""

    def __init__(self, name, help_text="", buckets=DEFAULT_BUCKETS):
        bounds = tuple(float(b) for b in buckets)
        if not bounds or any(a >= b for a, b in zip(bounds, bounds[1:])):
            raise ValueError("histogram buckets must be non-empty and strictly increasing")
        self.name = name
        self.help_text = help_text
        self.buckets = bounds
        self._counts = {}
        self._sums = defaultdict(float)
        self._lock = threading.Lock()

    def observe(self, label, value):
        """Record one observation for label."""
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            counts = self._counts.setdefault(label, [0] * (len(self.buckets) + 1))
            counts[index] += 1
            self._sums[label] += value

    def count(self, label):
        """Number of observations recorded for label."""
        with self._lock:
            return sum(self._counts.get(label, ()))

    def total(self, label):
        """Sum of observations recorded for label."""
        with self._lock:
            return self._sums.get(label, 0.0)


ORDER_SECKILL_PROCESS_TOTAL = CounterVec(
    "order_seckill_process_total",
    "Total number of seckill order consume results.",
)
ORDER_SECKILL_PROCESS_DURATION_SECONDS = HistogramVec(
    "order_seckill_process_duration_seconds",
    "Latency of seckill order processing by result.",
)
ORDER_SECKILL_TIMEOUT_TOTAL = CounterVec(
    "order_seckill_timeout_total",
    "Total timeout compensation outcomes for seckill orders.",
)