"""Structured logging configuration.

Provides JSON-formatted logging suitable for log aggregation (ELK, CloudWatch,
Datadog). All logs include:
- ISO8601 timestamp
- Log level
- Logger name
- Event type (for filtering)
- Service metadata

Batch submission logs ``submit.batch.started``, ``submit.checkpoint`` and
``submit.batch.completed`` on the ``emp.submit`` channel; reconciliation logs
``reconcile.upload.completed`` and ``reconcile.recent.completed`` on
``emp.reconcile``.
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from emp_ops.core.config import settings


# Log directory for file-based shipping
LOG_DIR = Path("/var/log/emp-ops")


class ServiceJsonFormatter(JsonFormatter):
    """JSON formatter adding service metadata to every record."""

    def __init__(self, *args, **kwargs):
        super().__init__(
            *args,
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "@timestamp",
                "levelname": "level",
                "name": "logger",
            },
            **kwargs,
        )

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["@timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["service"] = {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

        if "level" in log_record:
            log_record["level"] = log_record["level"].upper()

        if "event_type" not in log_record:
            log_record["event_type"] = f"log.{record.name}"

        log_record["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structured logging for the application.

    Sets up a JSON console handler and, when the log directory exists,
    a daily rotating file handler. Call this at application startup.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if settings.DEBUG else level)
    root_logger.handlers.clear()

    json_formatter = ServiceJsonFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(json_formatter)
    root_logger.addHandler(console_handler)

    if LOG_DIR.exists():
        _setup_file_handlers(json_formatter)

    _configure_uvicorn_loggers(json_formatter)

    logging.info(
        "Logging configured",
        extra={
            "event_type": "system.startup.logging_configured",
            "file_logging": LOG_DIR.exists(),
        },
    )


def _setup_file_handlers(formatter: logging.Formatter) -> None:
    """Set up rotating file handlers."""
    root_logger = logging.getLogger()

    app_handler = logging.handlers.TimedRotatingFileHandler(
        LOG_DIR / "application.log",
        when="midnight",
        interval=1,
        backupCount=30,
        encoding="utf-8",
    )
    app_handler.setFormatter(formatter)
    root_logger.addHandler(app_handler)

    # Gateway traffic gets its own file for dispute investigations
    gateway_handler = logging.handlers.TimedRotatingFileHandler(
        LOG_DIR / "gateway.log",
        when="midnight",
        interval=1,
        backupCount=365,
        encoding="utf-8",
    )
    gateway_handler.setFormatter(formatter)
    gateway_handler.addFilter(logging.Filter("emp.gateway"))
    root_logger.addHandler(gateway_handler)


def _configure_uvicorn_loggers(formatter: logging.Formatter) -> None:
    """Configure uvicorn loggers to use JSON format."""
    for logger_name in ["uvicorn", "uvicorn.error", "uvicorn.access"]:
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
