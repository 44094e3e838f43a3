"""
Logging setup for applications embedding Ansybl.

`configure_logging` installs JSON (or plain console) output on the
`ansybl` logger; `get_logger` hands out StructuredLoggers beneath it.
"""

import logging
import logging.config
import os
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from .structured_logging import (
    LogContext,
    LogContextManager,
    StructuredJSONFormatter,
    StructuredLogger,
    create_correlation_id,
    create_operation_id,
)

ROOT_LOGGER_NAME = "ansybl"

FORMATTERS: Dict[str, Dict[str, Any]] = {
    "json": {"()": "ansybl.common_tools.structured_logging.StructuredJSONFormatter"},
    "console": {"format": "%(asctime)s %(levelname)-8s %(name)s: %(message)s"},
}


def build_logging_config(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> Dict[str, Any]:
    """
    Build a dictConfig for the `ansybl` logger.

    Unspecified values fall back to ANSYBL_LOG_LEVEL / ANSYBL_LOG_FORMAT,
    then to WARNING / json. A log file, when given, always receives JSON.
    """
    level = (log_level or os.getenv("ANSYBL_LOG_LEVEL") or "WARNING").upper()
    stream_format = "console" if (log_format or os.getenv("ANSYBL_LOG_FORMAT") or "json").lower() == "console" else "json"

    handlers = {
        "console": {"class": "logging.StreamHandler", "formatter": stream_format, "stream": "ext://sys.stderr"},
    }
    if log_file:
        handlers["file"] = {"class": "logging.FileHandler", "formatter": "json", "filename": log_file, "mode": "a"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {name: dict(spec) for name, spec in FORMATTERS.items()},
        "handlers": handlers,
        "loggers": {
            ROOT_LOGGER_NAME: {"level": level, "handlers": list(handlers), "propagate": False},
        },
    }


def configure_logging(
    log_level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[str] = None
) -> Dict[str, Any]:
    """
    Configure the `ansybl` logger hierarchy and return the applied dictConfig.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: 'json' or 'console'
        log_file: Optional path that additionally receives JSON records
    """
    config = build_logging_config(log_level, log_format, log_file)
    logging.config.dictConfig(config)

    get_logger("logging").debug(
        "Logging configured",
        extra_fields={
            "log_level": config["loggers"][ROOT_LOGGER_NAME]["level"],
            "handlers": sorted(config["handlers"]),
        }
    )
    return config


def get_logger(component: str) -> StructuredLogger:
    """Structured logger for a component such as "builder" or "parser"."""
    return StructuredLogger(f"{ROOT_LOGGER_NAME}.{component}", component)


@contextmanager
def operation_context(
    logger: StructuredLogger,
    operation: str,
    correlation_id: Optional[str] = None,
    feed_url: Optional[str] = None,
    **extra_fields: Any
) -> Iterator[LogContext]:
    """
    Tag every record logged inside the block with one correlation id, then
    log whether the operation completed or failed and how long it took.
    """
    started = time.perf_counter()
    binding = logger.bind(
        operation=operation,
        operation_id=create_operation_id(operation),
        correlation_id=correlation_id or create_correlation_id(),
        feed_url=feed_url,
        extra_fields=extra_fields or None,
    )
    with binding as context:
        try:
            yield context
        except Exception as e:
            logger.log_event(operation, "failed", _elapsed_ms(started), error=str(e))
            raise
        logger.log_event(operation, "completed", _elapsed_ms(started))


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def log_processing_error(
    logger: StructuredLogger,
    error: Exception,
    operation: str,
    correlation_id: Optional[str] = None,
    extra_data: Optional[Dict[str, Any]] = None
) -> None:
    """Log an unexpected exception raised while running operation."""
    details = {"error_type": type(error).__name__, "error_message": str(error)}
    if extra_data:
        details.update(extra_data)

    logger.log(
        logging.ERROR,
        f"Unexpected error during {operation}: {error}",
        exc_info=error,
        operation=operation,
        correlation_id=correlation_id,
        extra_fields=details,
    )


__all__ = [
    "build_logging_config",
    "configure_logging",
    "get_logger",
    "operation_context",
    "log_processing_error",
    "StructuredLogger",
    "StructuredJSONFormatter",
    "LogContext",
    "LogContextManager",
]
