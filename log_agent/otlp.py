"""OTLP/HTTP JSON log records: wire types and the record builder."""

import socket
import time
from dataclasses import dataclass, field
from typing import Union

from log_agent.config import DEFAULT_SERVICE_NAME, Config

_INT64_MAX = 2**63 - 1


@dataclass(frozen=True)
class StringValue:
    value: str

    def to_dict(self) -> dict:
        return {"stringValue": self.value}


# Closed set of attribute value kinds; add a new dataclass here to extend it.
AttributeValue = Union[StringValue]


@dataclass(frozen=True)
class KeyValue:
    key: str
    value: AttributeValue

    def to_dict(self) -> dict:
        return {"key": self.key, "value": self.value.to_dict()}


@dataclass(frozen=True)
class LogRecord:
    time_unix_nano: int
    severity_text: str
    severity_number: int
    body: StringValue
    attributes: tuple[KeyValue, ...] = ()

    def to_dict(self) -> dict:
        return {
            "timeUnixNano": str(self.time_unix_nano),
            "severityText": self.severity_text,
            "severityNumber": self.severity_number,
            "body": self.body.to_dict(),
            "attributes": [kv.to_dict() for kv in self.attributes],
        }


@dataclass(frozen=True)
class TelemetryRecord:
    """One resource with one log record; the agent never batches."""

    resource_attributes: tuple[KeyValue, ...]
    log_records: tuple[LogRecord, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "resourceLogs": [
                {
                    "resource": {
                        "attributes": [kv.to_dict() for kv in self.resource_attributes],
                    },
                    "scopeLogs": [
                        {"logRecords": [r.to_dict() for r in self.log_records]},
                    ],
                }
            ]
        }


def resolve_service_name(config: Config) -> str:
    return config.service_name or DEFAULT_SERVICE_NAME


def resolve_host_name(config: Config) -> str:
    """Configured host name, else the OS host name, else "unknown"."""
    if config.host_name:
        return config.host_name
    try:
        return socket.gethostname() or "unknown"
    except OSError:
        return "unknown"


def now_unix_nano() -> int:
    """Wall-clock nanoseconds since the epoch, 0 if not representable as int64."""
    ns = time.time_ns()
    if ns < 0 or ns > _INT64_MAX:
        return 0
    return ns


def build_telemetry_record(
    line: str,
    file: str,
    severity_text: str,
    severity_number: int,
    config: Config,
) -> TelemetryRecord:
    """Wrap one log line in an OTLP record.

    Resource attributes are resolved on every call; they are constant for the
    life of the process so callers may cache the result if it ever matters.
    """
    resource = (
        KeyValue("service.name", StringValue(resolve_service_name(config))),
        KeyValue("host.name", StringValue(resolve_host_name(config))),
    )
    record = LogRecord(
        time_unix_nano=now_unix_nano(),
        severity_text=severity_text,
        severity_number=severity_number,
        body=StringValue(line),
        attributes=(KeyValue("log.file", StringValue(file)),),
    )
    return TelemetryRecord(resource_attributes=resource, log_records=(record,))
