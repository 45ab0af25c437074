"""
Structured Logging Configuration

JSON log lines for the suite. Every record emitted while a scenario runs
carries the scenario name and a correlation id, so the REST calls, Bayeux
traffic and delivered events of one scenario can be pulled out of a shared
CI log.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional

from pythonjsonlogger.json import JsonFormatter

LOGGER_NAMESPACE = "salesforce_streaming"

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
scenario_var: ContextVar[Optional[str]] = ContextVar("scenario", default=None)


class ScenarioContextFilter(logging.Filter):
    """Stamp records with the running scenario and its correlation id"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "N/A"
        if not hasattr(record, "scenario"):
            record.scenario = scenario_var.get()
        return True


class StreamingJsonFormatter(JsonFormatter):
    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["correlation_id"] = getattr(record, "correlation_id", "N/A")
        if getattr(record, "scenario", None):
            log_record["scenario"] = record.scenario

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def setup_logging(log_level: str = "INFO", propagate: bool = False) -> logging.Logger:
    """
    Configure the suite's loggers with JSON output on stdout.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        propagate: Also hand records to the root logger (lets pytest capture them)

    Returns:
        The namespace logger
    """
    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(log_level)
    logger.propagate = propagate
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(
        StreamingJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S.%fZ",
        )
    )
    # Records from child loggers reach this handler, so it stamps them all
    handler.addFilter(ScenarioContextFilter())
    logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Logger under the suite namespace (module names are namespaced already)"""
    if name == LOGGER_NAMESPACE or name.startswith(f"{LOGGER_NAMESPACE}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


@contextmanager
def scenario_context(name: str, correlation_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag log records with a scenario name and a fresh correlation id.

    Both are restored on exit, so nested or back-to-back scenarios do not
    leak into each other.

    Yields:
        The correlation id in effect
    """
    correlation_token = correlation_id_var.set(correlation_id or str(uuid.uuid4()))
    scenario_token = scenario_var.set(name)
    try:
        yield correlation_id_var.get()
    finally:
        scenario_var.reset(scenario_token)
        correlation_id_var.reset(correlation_token)


default_logger = setup_logging()
