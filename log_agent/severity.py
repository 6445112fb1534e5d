"""Best-effort severity detection from free-form log lines."""

import re

_SEVERITY_RE = re.compile(
    r"\b(INFO|ERROR|WARN|WARNING|DEBUG|CRITICAL|FATAL|NOTICE|TRACE)\b",
    re.IGNORECASE,
)

# keyword -> (severityText, severityNumber) per the OTLP log data model
SEVERITY_MAP: dict[str, tuple[str, int]] = {
    "TRACE": ("TRACE", 4),
    "DEBUG": ("DEBUG", 8),
    "INFO": ("INFO", 12),
    "NOTICE": ("INFO", 12),
    "WARN": ("WARN", 13),
    "WARNING": ("WARN", 13),
    "ERROR": ("ERROR", 17),
    "CRITICAL": ("FATAL", 21),
    "FATAL": ("FATAL", 21),
}

DEFAULT_SEVERITY = ("INFO", 12)


def detect_severity(line: str) -> tuple[str, int]:
    """Return (severity text, severity number) for the first keyword found in *line*.

    Matching is case-insensitive on whole words; the leftmost keyword wins.
    Lines without a keyword are INFO.
    """
    match = _SEVERITY_RE.search(line)
    if match is None:
        return DEFAULT_SEVERITY
    return SEVERITY_MAP.get(match.group(1).upper(), DEFAULT_SEVERITY)
