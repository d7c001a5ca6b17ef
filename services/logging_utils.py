#!/usr/bin/env python3
"""
FleetOps - JSON Logging Utilities

Structured NDJSON logging for the FleetOps reporting API and its CLI.
Falls back to the classic text format unless explicitly enabled.

Key Features:
- NDJSON (newline-delimited JSON) format
- Opt-in via LOG_JSON_ENABLED environment variable
- Correlation ID injection (set by the API's CorrelationIdFilter)
- Extra fields passed through from `extra={}`

Usage:
    from services.logging_utils import setup_json_logging

    logger = setup_json_logging(service_name="fleetops-api", version="1.0.0")
    logger.info("Rollup computed", extra={"site_count": 12})

Environment Variables:
    LOG_JSON_ENABLED: Enable JSON logging (default: false)
    LOG_LEVEL: Logging level (default: INFO)
    POD_NAME: Container/pod name for metadata

Author: FleetOps Team
License: MIT
Version: 1.0.0
"""

import os
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict


# Attributes every LogRecord carries; anything else came in via `extra={}`.
_STANDARD_RECORD_ATTRS = frozenset([
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "correlation_id",
])


class NDJSONFormatter(logging.Formatter):
    """
    Formats each log record as a single-line JSON object.

    Fields: timestamp, level, message, logger, module, function, line,
    thread, service, version, pod_name, correlation_id, error (when an
    exception is attached) and any extra fields from the log call.
    """

    def __init__(self, service_name: str, version: str):
        super().__init__()
        self.service_name = service_name
        self.version = version
        self.pod_name = os.getenv("POD_NAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "thread": threading.get_ident(),
            "service": self.service_name,
            "version": self.version,
            "pod_name": self.pod_name,
            "correlation_id": getattr(record, "correlation_id", None) or "system",
        }

        if record.exc_info:
            log_entry["error"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_ATTRS:
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        try:
            return json.dumps(log_entry, default=str)
        except Exception as e:
            return json.dumps(
                {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "level": "ERROR",
                    "message": f"Failed to serialize log record: {e}",
                    "service": self.service_name,
                    "correlation_id": "system",
                }
            )


class _DefaultCorrelationFilter(logging.Filter):
    """Guarantees `correlation_id` exists so the text format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "system"
        return True


def setup_json_logging(
    service_name: str,
    version: str,
    level: str = "INFO",
) -> logging.Logger:
    """
    Configure root logging for a FleetOps process.

    Uses NDJSON when LOG_JSON_ENABLED is truthy, otherwise the text format
    ``%(asctime)s - %(levelname)s - [%(correlation_id)s] - %(message)s``.
    Safe to call more than once; existing root handlers are replaced.

    Returns:
        The configured root logger.
    """
    json_enabled = os.getenv("LOG_JSON_ENABLED", "false").lower() in (
        "true",
        "1",
        "yes",
        "on",
    )
    log_level = os.getenv("LOG_LEVEL", level).upper()

    logger = logging.getLogger()
    logger.handlers.clear()
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    handler = logging.StreamHandler()
    handler.setLevel(logger.level)
    handler.addFilter(_DefaultCorrelationFilter())

    if json_enabled:
        handler.setFormatter(NDJSONFormatter(service_name=service_name, version=version))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(levelname)s - [%(correlation_id)s] - %(message)s"
        ))

    logger.addHandler(handler)
    logger.info(
        f"{'JSON' if json_enabled else 'Standard'} logging enabled for "
        f"service={service_name} version={version}"
    )
    return logger


def get_logger(name: str = __name__) -> logging.Logger:
    """Named logger inheriting the configuration from setup_json_logging()."""
    return logging.getLogger(name)
