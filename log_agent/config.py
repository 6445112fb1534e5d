"""Configuration: frozen dataclass loaded from a YAML file."""

import logging
import os
import re
import sys
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "./config.yml"
DEFAULT_ENDPOINT = "http://localhost:4318/v1/logs"
DEFAULT_SERVICE_NAME = "otlp-log-agent"
QUEUE_POLICIES = ("block", "drop_oldest")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$")


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or fails validation."""


@dataclass(frozen=True)
class Config:
    log_files: tuple[str, ...] = ()
    endpoint: str = DEFAULT_ENDPOINT
    rate_limit: int | None = None
    service_name: str | None = None
    host_name: str | None = None
    queue_size: int = 10000
    queue_policy: str = "block"
    poll_interval: float = 0.5
    metrics_interval: int = 0
    log_level: str = "INFO"


def _optional_str(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_rate_limit(value) -> int | None:
    """0 or absent means unlimited."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"rate_limit must be an integer, got {value!r}")
    if value < 0:
        raise ConfigError(f"rate_limit must not be negative, got {value}")
    return value or None


def config_from_dict(data: dict) -> Config:
    """Build a Config from a parsed YAML mapping."""
    if not isinstance(data, dict):
        raise ConfigError("Config document must be a mapping")

    log_files = data.get("log_files")
    if not isinstance(log_files, list) or not all(isinstance(p, str) for p in log_files):
        raise ConfigError("log_files must be a list of file paths")

    endpoint = data.get("endpoint")
    if not isinstance(endpoint, str):
        raise ConfigError("endpoint must be a URL string")

    try:
        return Config(
            log_files=tuple(p.strip() for p in log_files if p.strip()),
            endpoint=endpoint.strip(),
            rate_limit=_parse_rate_limit(data.get("rate_limit")),
            service_name=_optional_str(data.get("service_name")),
            host_name=_optional_str(data.get("host_name")),
            queue_size=int(data.get("queue_size", Config.queue_size)),
            queue_policy=str(data.get("queue_policy", Config.queue_policy)).lower(),
            poll_interval=float(data.get("poll_interval", Config.poll_interval)),
            metrics_interval=int(data.get("metrics_interval", Config.metrics_interval)),
            log_level=str(data.get("log_level", Config.log_level)).upper(),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config value: {e}") from e


def config_to_dict(config: Config) -> dict:
    """Serializable form of the user-facing fields, as written by the first-run prompt."""
    data: dict = {
        "log_files": list(config.log_files),
        "endpoint": config.endpoint,
        "rate_limit": config.rate_limit or 0,
    }
    if config.service_name:
        data["service_name"] = config.service_name
    if config.host_name:
        data["host_name"] = config.host_name
    return data


def load_config(path: str) -> Config:
    """Read and parse the YAML config at *path*."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed config file {path}: {e}") from e

    config = config_from_dict(data or {})
    logger.info("Loaded config from %s", path)
    return config


def save_config(config: Config, path: str):
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)


def prompt_for_config(input_func=input) -> Config:
    """Ask the user for each setting on the terminal."""

    def ask(prompt: str, default: str | None = None) -> str:
        suffix = f" [{default}]" if default is not None else ""
        answer = input_func(f"{prompt}{suffix}: ").strip()
        if not answer and default is not None:
            return default
        return answer

    log_files = [
        p.strip()
        for p in ask("Enter comma-separated log file paths").split(",")
        if p.strip()
    ]
    endpoint = ask("Enter OTLP HTTP endpoint", DEFAULT_ENDPOINT)

    while True:
        raw_limit = ask("Enter rate limit (logs per second, 0 for unlimited)", "100")
        try:
            rate_limit = _parse_rate_limit(int(raw_limit))
            break
        except (ValueError, ConfigError):
            print(f"Invalid rate limit: {raw_limit!r}", file=sys.stderr)

    service_name = ask("Enter service name", DEFAULT_SERVICE_NAME)
    host_name = ask("Enter host name (leave blank to auto-detect)", "")

    return Config(
        log_files=tuple(log_files),
        endpoint=endpoint,
        rate_limit=rate_limit,
        service_name=_optional_str(service_name),
        host_name=_optional_str(host_name),
    )


def load_or_create_config(path: str, interactive: bool | None = None, input_func=input) -> Config:
    """Load the config at *path*, prompting for a new one on first run.

    Prompting only happens when stdin is a terminal unless *interactive*
    forces it either way.
    """
    if os.path.exists(path):
        return load_config(path)

    if interactive is None:
        interactive = sys.stdin.isatty()
    if not interactive:
        raise ConfigError(f"Config file {path} not found")

    print(f"No config found at {path}. Let's create one.")
    try:
        config = prompt_for_config(input_func)
    except (EOFError, KeyboardInterrupt) as e:
        raise ConfigError("Configuration prompt aborted before all settings were entered") from e
    try:
        save_config(config, path)
    except OSError as e:
        raise ConfigError(f"Cannot write config file {path}: {e}") from e
    print(f"Saved config to {path}")
    return config


def validate_config(config: Config):
    """Check startup preconditions. Raises ConfigError on the first problem."""
    if not config.log_files:
        raise ConfigError("No log files configured")

    for log_file in config.log_files:
        if not os.path.exists(log_file):
            raise ConfigError(f"Log file does not exist: {log_file}")
        try:
            os.stat(log_file)
        except OSError as e:
            raise ConfigError(f"Cannot access log file {log_file}: {e}") from e

    if not config.endpoint.startswith(("http://", "https://")):
        raise ConfigError("Endpoint URL must start with http:// or https://")
    if not _URL_RE.match(config.endpoint):
        raise ConfigError(f"Invalid endpoint URL format: {config.endpoint}")

    if config.queue_size <= 0:
        raise ConfigError(f"queue_size must be positive, got {config.queue_size}")
    if config.queue_policy not in QUEUE_POLICIES:
        raise ConfigError(
            f"queue_policy must be one of {', '.join(QUEUE_POLICIES)}, got {config.queue_policy!r}"
        )
    if config.poll_interval <= 0:
        raise ConfigError(f"poll_interval must be positive, got {config.poll_interval}")
    if config.metrics_interval < 0:
        raise ConfigError(f"metrics_interval must not be negative, got {config.metrics_interval}")
    if config.log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {config.log_level!r}")
