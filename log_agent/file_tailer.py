"""Per-file tailer that follows appended lines and recovers from rotation."""

import enum
import logging
import os
import random
import threading

from log_agent.ingest_queue import IngestionQueue
from log_agent.models import LogEntry

logger = logging.getLogger(__name__)

READ_CHUNK = 64 * 1024
MAX_LINE_BYTES = 1024 * 1024


class FileRotated(OSError):
    """The path no longer refers to the file being read."""


class TailerState(enum.Enum):
    OPENING = "opening"
    READING = "reading"
    DEGRADED = "degraded"
    STOPPED = "stopped"


class FileTailer:
    """Watches one log file and enqueues every new non-blank line.

    States:
    - OPENING: open the path and seek to EOF, so existing content is skipped.
      A failure here propagates out of run() to the supervisor.
    - READING: poll for appended bytes, emit complete lines. An unterminated
      line longer than max_line_bytes is emitted as is.
    - DEGRADED(n): after a read error, back off and reopen at EOF. The delay
      doubles from reopen_delay up to max_reopen_delay, plus jitter.

    Rotation and truncation surface as read errors: an idle poll that finds
    the path gone, its inode changed, or shorter than our offset raises
    FileRotated.
    """

    def __init__(
        self,
        path: str,
        q: IngestionQueue,
        endpoint: str,
        shutdown_event: threading.Event,
        poll_interval: float = 0.5,
        reopen_delay: float = 5.0,
        max_reopen_delay: float = 30.0,
        max_line_bytes: int = MAX_LINE_BYTES,
    ):
        self._path = path
        self._queue = q
        self._endpoint = endpoint
        self._shutdown = shutdown_event
        self._poll_interval = poll_interval
        self._reopen_delay = reopen_delay
        self._max_reopen_delay = max_reopen_delay
        self._max_line_bytes = max_line_bytes
        self._file = None
        self._inode: int | None = None
        self._offset = 0
        self._partial = b""
        self._state = TailerState.OPENING
        self._reopen_attempts = 0

    @property
    def path(self) -> str:
        return self._path

    @property
    def state(self) -> TailerState:
        return self._state

    @property
    def reopen_attempts(self) -> int:
        return self._reopen_attempts

    def run(self):
        """Tail until shutdown. Raises OSError if the initial open fails."""
        self._state = TailerState.OPENING
        try:
            self._open()
            self._state = TailerState.READING
            logger.info("Tailing %s", self._path)

            while not self._shutdown.is_set():
                if self._state is TailerState.READING:
                    try:
                        if not self._read_available():
                            self._check_identity()
                            self._shutdown.wait(self._poll_interval)
                    except OSError as e:
                        logger.error("Error reading %s: %s", self._path, e)
                        self._close()
                        self._state = TailerState.DEGRADED
                        self._reopen_attempts = 1
                else:
                    self._try_reopen()
        finally:
            self._close()
            self._state = TailerState.STOPPED

    def reopen_backoff(self, attempt: int) -> float:
        """Capped exponential delay before reopen *attempt*, jitter included."""
        delay = min(self._reopen_delay * (2 ** (attempt - 1)), self._max_reopen_delay)
        return delay + random.uniform(0, delay * 0.3)

    def _try_reopen(self):
        delay = self.reopen_backoff(self._reopen_attempts)
        logger.info("Reopening %s in %.1fs (attempt %d)", self._path, delay, self._reopen_attempts)
        if self._shutdown.wait(delay):
            return
        try:
            self._open()
        except OSError as e:
            logger.error("Failed to reopen %s: %s", self._path, e)
            self._reopen_attempts += 1
            return
        logger.info("Successfully reopened %s", self._path)
        self._reopen_attempts = 0
        self._state = TailerState.READING

    def _open(self):
        """Open the file positioned at its current end."""
        self._file = open(self._path, "rb")
        try:
            self._inode = os.fstat(self._file.fileno()).st_ino
            self._offset = self._file.seek(0, os.SEEK_END)
        except OSError:
            self._close()
            raise
        self._partial = b""
        logger.debug("Opened %s (inode=%d, offset=%d)", self._path, self._inode, self._offset)

    def _close(self):
        if self._file:
            try:
                self._file.close()
            except OSError as e:
                logger.debug("Error closing %s: %s", self._path, e)
            self._file = None

    def _read_available(self) -> bool:
        """Read what has been appended and emit complete lines. False if nothing new."""
        data = self._file.read(READ_CHUNK)
        if not data:
            return False
        self._offset += len(data)

        data = self._partial + data
        lines = data.split(b"\n")
        # Last element is the unterminated remainder (empty if data ended on \n)
        self._partial = lines.pop()
        if len(self._partial) > self._max_line_bytes:
            logger.warning(
                "Unterminated line in %s exceeds %d bytes, emitting it without a newline",
                self._path, self._max_line_bytes,
            )
            lines.append(self._partial)
            self._partial = b""

        for raw in lines:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line.strip():
                self._emit(line)
        return True

    def _check_identity(self):
        st = os.stat(self._path)
        if st.st_ino != self._inode:
            raise FileRotated(f"{self._path} was replaced (inode {self._inode} -> {st.st_ino})")
        if st.st_size < self._offset:
            raise FileRotated(f"{self._path} was truncated ({st.st_size} < {self._offset} bytes)")

    def _emit(self, line: str):
        logger.debug("[%s] %s", self._path, line)
        self._queue.put(LogEntry(line=line, file=self._path, endpoint=self._endpoint))
