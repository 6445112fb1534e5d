"""Delivery dispatcher: drains the ingestion queue and POSTs OTLP records."""

import logging
import threading
import time

import requests

from log_agent.config import Config
from log_agent.ingest_queue import IngestionQueue
from log_agent.metrics import Metrics
from log_agent.models import LogEntry
from log_agent.otlp import build_telemetry_record
from log_agent.rate_limiter import TokenBucket
from log_agent.severity import detect_severity

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_BACKOFF = 0.5
REQUEST_TIMEOUT = 10.0
DRAIN_TIMEOUT = 2.0


def backoff_delay(attempt: int, base: float = BASE_BACKOFF) -> float:
    """Delay after failed *attempt* (numbered from 1): 0.5s, 1s, 2s, ..."""
    return base * (2 ** (attempt - 1))


class Dispatcher(threading.Thread):
    """Single consumer that rate-limits, builds and delivers one record per entry.

    Stops when the shutdown event is set or the queue is closed and empty.
    On shutdown the in-flight entry is finished and whatever is still queued
    gets one delivery attempt each until the drain deadline passes. Drained
    sends still wait for a limiter token.
    """

    def __init__(
        self,
        config: Config,
        q: IngestionQueue,
        shutdown_event: threading.Event,
        limiter: TokenBucket | None = None,
        metrics: Metrics | None = None,
        session: requests.Session | None = None,
        max_attempts: int = MAX_ATTEMPTS,
        base_backoff: float = BASE_BACKOFF,
        request_timeout: float = REQUEST_TIMEOUT,
        drain_timeout: float = DRAIN_TIMEOUT,
        get_timeout: float = 0.5,
    ):
        super().__init__(name="dispatcher", daemon=True)
        self._config = config
        self._queue = q
        self._shutdown = shutdown_event
        self._limiter = limiter
        self._metrics = metrics or Metrics()
        self._session = session or requests.Session()
        self._max_attempts = max_attempts
        self._base_backoff = base_backoff
        self._request_timeout = request_timeout
        self._drain_timeout = drain_timeout
        self._get_timeout = get_timeout
        self._lock = threading.Lock()
        self._delivered = 0
        self._discarded = 0

    @property
    def delivered(self) -> int:
        with self._lock:
            return self._delivered

    @property
    def discarded(self) -> int:
        with self._lock:
            return self._discarded

    def run(self):
        pending: LogEntry | None = None
        try:
            while not self._shutdown.is_set():
                entry = self._queue.get(timeout=self._get_timeout)
                if entry is None:
                    if self._queue.closed and self._queue.empty():
                        logger.info("Ingestion queue closed, dispatcher exiting")
                        return
                    continue

                self._metrics.record_queue_depth(self._queue.qsize())
                if self._limiter and not self._limiter.acquire(cancel=self._shutdown):
                    pending = entry
                    break
                self.deliver(entry)

            self._drain(pending)
        finally:
            self._session.close()

    def _drain(self, pending: LogEntry | None):
        """Give each remaining entry a single attempt until the deadline.

        Drained sends still take a limiter token. The shutdown event is
        already set, so the token wait is bounded by the deadline instead.
        """
        deadline = time.monotonic() + self._drain_timeout
        drained = 0
        abandoned = 0
        if pending is not None:
            if self._take_drain_token(deadline):
                self.deliver(pending, max_attempts=1)
                drained += 1
            else:
                abandoned += 1

        while time.monotonic() < deadline:
            if not self._take_drain_token(deadline):
                break
            entry = self._queue.get_nowait()
            if entry is None:
                break
            self.deliver(entry, max_attempts=1)
            drained += 1

        abandoned += self._queue.qsize()
        self._metrics.record_abandoned(abandoned)
        logger.info("Dispatcher drained %d entries on shutdown, %d abandoned", drained, abandoned)

    def _take_drain_token(self, deadline: float) -> bool:
        """Take a limiter token before *deadline*. False if the deadline passes first."""
        if self._limiter is None:
            return True
        while not self._limiter.try_acquire():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(max(self._limiter.time_until_ready(), 0.001), remaining))
        return True

    def deliver(self, entry: LogEntry, max_attempts: int | None = None) -> bool:
        """Classify, build and POST one entry. Returns True once delivered."""
        if max_attempts is None:
            max_attempts = self._max_attempts

        severity_text, severity_number = detect_severity(entry.line)
        record = build_telemetry_record(
            entry.line, entry.file, severity_text, severity_number, self._config,
        )
        payload = record.to_dict()

        last_status = "no attempt"
        for attempt in range(1, max_attempts + 1):
            t0 = time.monotonic()
            try:
                response = self._session.post(
                    entry.endpoint, json=payload, timeout=self._request_timeout,
                )
            except requests.RequestException as e:
                last_status = f"error: {e}"
                logger.warning(
                    "HTTP error sending log: %s (attempt %d/%d)", e, attempt, max_attempts,
                )
            else:
                if 200 <= response.status_code < 300:
                    latency_ms = (time.monotonic() - t0) * 1000
                    self._metrics.record_sent(latency_ms)
                    with self._lock:
                        self._delivered += 1
                    logger.debug(
                        "Delivered [%s] (%s/%d)", entry.line, severity_text, severity_number,
                    )
                    return True
                last_status = f"HTTP {response.status_code}"
                logger.warning(
                    "Collector rejected log: HTTP %d (attempt %d/%d)",
                    response.status_code, attempt, max_attempts,
                )

            if attempt < max_attempts:
                self._metrics.record_retry()
                # Shutdown cuts the wait short; the remaining attempts still run.
                self._shutdown.wait(backoff_delay(attempt, self._base_backoff))

        self._metrics.record_failed()
        with self._lock:
            self._discarded += 1
        logger.error(
            "Failed to send log after %d attempts (%s), discarding: %s",
            max_attempts, last_status, entry.line,
        )
        return False
