"""Bounded ingestion queue between tailers and the dispatcher."""

import logging
import queue
import threading

from log_agent.metrics import Metrics
from log_agent.models import LogEntry

logger = logging.getLogger(__name__)

BLOCK = "block"
DROP_OLDEST = "drop_oldest"


class IngestionQueue:
    """Multi-producer, single-consumer FIFO with a fixed capacity.

    When full, producers either wait for room (``block``) or evict the
    oldest queued entry (``drop_oldest``). Blocking puts re-check the
    shutdown event so a stalled dispatcher never wedges a tailer forever.
    """

    def __init__(
        self,
        maxsize: int,
        shutdown_event: threading.Event,
        policy: str = BLOCK,
        metrics: Metrics | None = None,
        put_check_interval: float = 0.5,
    ):
        if policy not in (BLOCK, DROP_OLDEST):
            raise ValueError(f"Unknown queue policy: {policy!r}")
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._shutdown = shutdown_event
        self._policy = policy
        self._metrics = metrics
        self._put_check_interval = put_check_interval
        self._closed = threading.Event()
        self._evict_lock = threading.Lock()
        self._dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def dropped(self) -> int:
        return self._dropped

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def close(self):
        """Mark the queue permanently closed; no producer will put again."""
        self._closed.set()

    def put(self, entry: LogEntry) -> bool:
        """Enqueue *entry*. Returns False if it was abandoned because of shutdown."""
        if self._policy == DROP_OLDEST:
            self._put_drop_oldest(entry)
            return True

        while True:
            try:
                self._queue.put(entry, timeout=self._put_check_interval)
                return True
            except queue.Full:
                if self._shutdown.is_set():
                    logger.warning("Queue full during shutdown, abandoning line from %s", entry.file)
                    if self._metrics:
                        self._metrics.record_abandoned()
                    return False

    def _put_drop_oldest(self, entry: LogEntry):
        # Serialize evictions so concurrent producers don't evict twice for one slot
        with self._evict_lock:
            while True:
                try:
                    self._queue.put_nowait(entry)
                    return
                except queue.Full:
                    pass
                try:
                    evicted = self._queue.get_nowait()
                except queue.Empty:
                    continue
                self._dropped += 1
                if self._metrics:
                    self._metrics.record_dropped()
                logger.warning(
                    "Queue full, dropped oldest line from %s (%d dropped so far)",
                    evicted.file, self._dropped,
                )

    def get(self, timeout: float | None = None) -> LogEntry | None:
        """Return the next entry, blocking up to *timeout* seconds (forever if None).

        Returns None if nothing arrived in time.
        """
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def get_nowait(self) -> LogEntry | None:
        """Return the next entry, or None if the queue is empty right now."""
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None
