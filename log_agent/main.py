#!/usr/bin/env python3
"""OTLP Log Agent entry point."""

import argparse
import logging
import signal
import sys
import threading

from log_agent import service
from log_agent.config import (
    DEFAULT_CONFIG_PATH,
    Config,
    ConfigError,
    load_or_create_config,
    validate_config,
)
from log_agent.dispatcher import Dispatcher
from log_agent.ingest_queue import IngestionQueue
from log_agent.metrics import Metrics, MetricsReporter, format_snapshot
from log_agent.rate_limiter import build_rate_limiter
from log_agent.supervisor import TailerSupervisor

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE = 2.0
POLL_INTERVAL = 1.0

TERMINATION_SIGNALS = [signal.SIGINT, signal.SIGTERM]
if hasattr(signal, "SIGQUIT"):
    TERMINATION_SIGNALS.append(signal.SIGQUIT)


def build_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="log-agent",
        description="Tail log files and ship each new line to an OTLP/HTTP collector",
    )
    parser.add_argument(
        "--config", default=DEFAULT_CONFIG_PATH,
        help=f"Path to the YAML config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--install-service", action="store_true",
        help=f"Write a systemd unit to {service.SERVICE_PATH} and print install steps",
    )
    return parser


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        stream=sys.stderr,
    )


def install_signal_handlers(shutdown_event: threading.Event):
    def _handler(signum, frame):
        if not shutdown_event.is_set():
            logger.info("Received signal %d, shutting down...", signum)
        shutdown_event.set()

    for sig in TERMINATION_SIGNALS:
        signal.signal(sig, _handler)


class Agent:
    """Wires the tailers, queue, limiter and dispatcher around one shutdown event."""

    def __init__(self, config: Config, shutdown_event: threading.Event, session=None):
        self._config = config
        self._shutdown = shutdown_event
        self.metrics = Metrics()
        self.queue = IngestionQueue(
            config.queue_size, shutdown_event, policy=config.queue_policy, metrics=self.metrics,
        )
        self.limiter = build_rate_limiter(config.rate_limit)
        self.dispatcher = Dispatcher(
            config, self.queue, shutdown_event,
            limiter=self.limiter, metrics=self.metrics, session=session,
            drain_timeout=SHUTDOWN_GRACE,
        )
        self.supervisor = TailerSupervisor(config, self.queue, shutdown_event)
        self._reporter: MetricsReporter | None = None
        if config.metrics_interval > 0:
            self._reporter = MetricsReporter(self.metrics, config.metrics_interval, shutdown_event)

    def start(self):
        if self.limiter:
            logger.info("Rate limiting enabled: %d logs/second", self._config.rate_limit)
        self.dispatcher.start()
        self.supervisor.start()
        if self._reporter:
            self._reporter.start()

    def stop(self, grace: float = SHUTDOWN_GRACE):
        """Set the shutdown event and give the workers *grace* seconds to finish."""
        self._shutdown.set()
        self.dispatcher.join(timeout=grace)
        self.supervisor.join(timeout=grace)
        if self._reporter:
            self._reporter.stop()
        if self.dispatcher.is_alive():
            logger.warning("Dispatcher still busy after %.1fs grace period", grace)
        logger.info(format_snapshot(self.metrics.snapshot_and_reset()))


def run_agent(config: Config, shutdown_event: threading.Event, session=None) -> int:
    logger.info("Monitoring log files: %s", ", ".join(config.log_files))
    logger.info("OTLP endpoint: %s", config.endpoint)

    agent = Agent(config, shutdown_event, session=session)
    agent.start()
    logger.info("otlp-log-agent is running. Press Ctrl+C to exit.")

    while not shutdown_event.wait(POLL_INTERVAL):
        pass

    logger.info("Shutting down gracefully...")
    agent.stop(SHUTDOWN_GRACE)
    return 0


def main(argv: list[str] | None = None) -> int:
    setup_logging()
    args = build_cli_parser().parse_args(argv)

    if args.install_service:
        try:
            path = service.write_service_file(service.SERVICE_PATH)
        except OSError as e:
            logger.error("Failed to create systemd service: %s", e)
            return 1
        print(service.install_instructions(path))
        return 0

    try:
        config = load_or_create_config(args.config)
        validate_config(config)
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    logging.getLogger().setLevel(config.log_level)
    shutdown_event = threading.Event()
    install_signal_handlers(shutdown_event)
    return run_agent(config, shutdown_event)


if __name__ == "__main__":
    sys.exit(main())
