"""Log entry model passed from tailers to the dispatcher."""

from dataclasses import dataclass


@dataclass(frozen=True)
class LogEntry:
    line: str        # trailing newline trimmed, never blank
    file: str        # source path
    endpoint: str    # copied from Config when the entry is created
