"""Supervisor that owns one tailer thread per file and restarts failed ones."""

import logging
import random
import threading
from dataclasses import dataclass

from log_agent.config import Config
from log_agent.file_tailer import FileTailer
from log_agent.ingest_queue import IngestionQueue

logger = logging.getLogger(__name__)

RUNNING = "running"
BACKOFF = "backoff"
STOPPED = "stopped"
FAILED = "failed"


@dataclass
class TailerTask:
    path: str
    thread: threading.Thread | None = None
    state: str = RUNNING
    restarts: int = 0
    last_error: str | None = None


class TailerSupervisor:
    """Runs a FileTailer per configured path with a bounded restart policy.

    A tailer that raises (typically because its file could not be opened) is
    restarted after min(restart_delay * 2^(n-1), max_restart_delay) plus
    jitter, up to max_restarts times; after that its file is abandoned. When
    every task has finished the ingestion queue is closed.
    """

    def __init__(
        self,
        config: Config,
        q: IngestionQueue,
        shutdown_event: threading.Event,
        max_restarts: int = 5,
        restart_delay: float = 1.0,
        max_restart_delay: float = 30.0,
        tailer_factory=None,
    ):
        self._config = config
        self._queue = q
        self._shutdown = shutdown_event
        self._max_restarts = max_restarts
        self._restart_delay = restart_delay
        self._max_restart_delay = max_restart_delay
        self._tailer_factory = tailer_factory or self._default_tailer
        self._tasks: dict[str, TailerTask] = {}
        self._lock = threading.Lock()
        self._active = 0

    def _default_tailer(self, path: str) -> FileTailer:
        return FileTailer(
            path,
            self._queue,
            self._config.endpoint,
            self._shutdown,
            poll_interval=self._config.poll_interval,
        )

    @property
    def tasks(self) -> dict[str, TailerTask]:
        return self._tasks

    def start(self):
        for path in self._config.log_files:
            if path in self._tasks:
                logger.warning("Duplicate log file %s ignored", path)
                continue
            task = TailerTask(path=path)
            task.thread = threading.Thread(
                target=self._run_task, args=(task,), name=f"tailer:{path}", daemon=True,
            )
            self._tasks[path] = task
            with self._lock:
                self._active += 1

        for task in self._tasks.values():
            task.thread.start()

        if not self._tasks:
            self._queue.close()

    def join(self, timeout: float | None = None):
        for task in self._tasks.values():
            if task.thread:
                task.thread.join(timeout=timeout)

    def status(self) -> dict[str, str]:
        with self._lock:
            return {path: task.state for path, task in self._tasks.items()}

    def restart_backoff(self, restart: int) -> float:
        delay = min(self._restart_delay * (2 ** (restart - 1)), self._max_restart_delay)
        return delay + random.uniform(0, delay * 0.3)

    def _set_state(self, task: TailerTask, state: str):
        with self._lock:
            task.state = state

    def _run_task(self, task: TailerTask):
        try:
            while not self._shutdown.is_set():
                self._set_state(task, RUNNING)
                try:
                    self._tailer_factory(task.path).run()
                except OSError as e:
                    task.last_error = str(e)
                    logger.error("Tailer for %s failed: %s", task.path, e)
                except Exception as e:
                    # Only OSError is restartable
                    task.last_error = str(e)
                    logger.exception("Tailer for %s crashed, file is no longer monitored", task.path)
                    self._set_state(task, FAILED)
                    return
                else:
                    break

                if task.restarts >= self._max_restarts:
                    logger.error(
                        "Giving up on %s after %d restarts; file is no longer monitored",
                        task.path, task.restarts,
                    )
                    self._set_state(task, FAILED)
                    return

                task.restarts += 1
                delay = self.restart_backoff(task.restarts)
                self._set_state(task, BACKOFF)
                logger.info(
                    "Restarting tailer for %s in %.1fs (restart %d/%d)",
                    task.path, delay, task.restarts, self._max_restarts,
                )
                self._shutdown.wait(delay)

            self._set_state(task, STOPPED)
        finally:
            self._task_finished()

    def _task_finished(self):
        with self._lock:
            self._active -= 1
            last = self._active == 0
        if last:
            logger.info("All tailers have exited, closing ingestion queue")
            self._queue.close()
