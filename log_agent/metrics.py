"""Delivery counters for the agent and a periodic stderr summary."""

import logging
import sys
import threading

logger = logging.getLogger(__name__)

# Every way a tailed line can leave the pipeline, plus retried attempts.
COUNTERS = ("sent", "retried", "failed", "dropped", "abandoned")


class Metrics:
    """Thread-safe counters shared by the queue and the dispatcher.

    - sent: records the collector accepted
    - retried: failed attempts that were followed by another attempt
    - failed: records discarded after their last attempt failed
    - dropped: entries evicted from a full queue (drop_oldest policy)
    - abandoned: entries given up on because of shutdown, either a blocked
      put or whatever the drain could not send before its deadline
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counts = dict.fromkeys(COUNTERS, 0)
        self._latencies: list[float] = []
        self._queue_samples: list[int] = []

    def _incr(self, name: str, n: int = 1):
        with self._lock:
            self._counts[name] += n

    def record_sent(self, latency_ms: float):
        """Record a delivered record with its request latency in milliseconds."""
        with self._lock:
            self._counts["sent"] += 1
            self._latencies.append(latency_ms)

    def record_retry(self):
        self._incr("retried")

    def record_failed(self):
        self._incr("failed")

    def record_dropped(self):
        self._incr("dropped")

    def record_abandoned(self, n: int = 1):
        if n > 0:
            self._incr("abandoned", n)

    def record_queue_depth(self, size: int):
        with self._lock:
            self._queue_samples.append(size)

    def snapshot_and_reset(self) -> dict:
        """Atomically read all counters and reset them to zero."""
        with self._lock:
            latencies = self._latencies
            samples = self._queue_samples
            snapshot = dict(self._counts)
            snapshot["avg_latency_ms"] = sum(latencies) / len(latencies) if latencies else 0.0
            snapshot["max_latency_ms"] = max(latencies) if latencies else 0.0
            snapshot["avg_queue_depth"] = sum(samples) / len(samples) if samples else 0.0

            self._counts = dict.fromkeys(COUNTERS, 0)
            self._latencies = []
            self._queue_samples = []
            return snapshot


def format_snapshot(snapshot: dict) -> str:
    counts = " ".join(f"{name}={snapshot[name]}" for name in COUNTERS)
    return (
        f"[metrics] {counts} "
        f"avg_latency={snapshot['avg_latency_ms']:.1f}ms "
        f"max_latency={snapshot['max_latency_ms']:.1f}ms "
        f"avg_queue={snapshot['avg_queue_depth']:.0f}"
    )


class MetricsReporter:
    """Background thread printing a summary line to stderr every *interval* seconds."""

    def __init__(self, metrics: Metrics, interval: float, shutdown_event: threading.Event):
        self._metrics = metrics
        self._interval = interval
        self._shutdown = shutdown_event
        self._thread: threading.Thread | None = None

    def start(self):
        self._thread = threading.Thread(target=self._report_loop, name="metrics-reporter", daemon=True)
        self._thread.start()

    def stop(self):
        """Wait for the reporter to exit; the caller sets the shutdown event."""
        if self._thread:
            self._thread.join(timeout=5)

    def _report_loop(self):
        while not self._shutdown.wait(self._interval):
            print(format_snapshot(self._metrics.snapshot_and_reset()), file=sys.stderr, flush=True)
