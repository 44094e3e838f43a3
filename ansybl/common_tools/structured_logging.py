"""
Structured JSON logging for Ansybl components.

Every record names the component that produced it and, when known, the
operation in progress and the feed/item it concerns. A thread-local stack
of LogContext values lets one build or parse share a correlation id.
"""

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TextIO

# Context attributes copied onto log records and into the JSON output
CONTEXT_FIELDS = ("component", "operation", "correlation_id", "operation_id", "feed_url", "item_id")


@dataclass(frozen=True)
class LogContext:
    """Who is logging, and about which feed or item."""
    component: str
    correlation_id: Optional[str] = None
    operation: Optional[str] = None
    operation_id: Optional[str] = None
    feed_url: Optional[str] = None
    item_id: Optional[str] = None
    extra_fields: Dict[str, Any] = field(default_factory=dict)

    def merged(self, extra_fields: Optional[Dict[str, Any]] = None, **overrides: Any) -> "LogContext":
        """Copy with the non-None overrides applied; extra fields are combined."""
        values = {name: value for name, value in overrides.items() if value is not None}
        if extra_fields:
            values["extra_fields"] = {**self.extra_fields, **extra_fields}
        return replace(self, **values)


class StructuredJSONFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def __init__(self, *args, hostname: str = "ansybl", **kwargs):
        super().__init__(*args, **kwargs)
        self.hostname = hostname

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self.hostname,
            "process_id": record.process,
            "thread_id": record.thread,
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if getattr(record, "extra_fields", None):
            entry["extra_fields"] = record.extra_fields

        if record.exc_info and record.exc_info[0] is not None:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str, ensure_ascii=False)


class StructuredLogger:
    """
    Logger bound to one component, with a thread-local context stack.

    Output handlers come from `configure_logging`; `attach_handler` gives
    this logger a JSON stream handler of its own instead.
    """

    def __init__(self, name: str, component: str, attach_handler: bool = False):
        self.logger = logging.getLogger(name)
        self.component = component
        self._local = threading.local()

        if attach_handler:
            self.attach_handler()

    def attach_handler(self, stream: Optional[TextIO] = None, level: int = logging.INFO) -> logging.Handler:
        """Send this logger's records, as JSON, to stream (stderr by default) only."""
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredJSONFormatter())
        self.logger.handlers = [handler]
        self.logger.setLevel(level)
        self.logger.propagate = False
        return handler

    # -- Context stack ----------------------------------------------------

    def _stack(self) -> List[LogContext]:
        stack = getattr(self._local, "stack", None)
        if stack is None:
            stack = self._local.stack = []
        return stack

    def push_context(self, context: LogContext) -> None:
        self._stack().append(context)

    def pop_context(self) -> Optional[LogContext]:
        stack = self._stack()
        return stack.pop() if stack else None

    def get_current_context(self) -> Optional[LogContext]:
        stack = self._stack()
        return stack[-1] if stack else None

    def bind(self, **fields: Any) -> "LogContextManager":
        """Context manager layering fields over the current context."""
        base = self.get_current_context() or LogContext(component=self.component)
        return LogContextManager(self, base.merged(**fields))

    # -- Emitting ---------------------------------------------------------

    def log(self, level: int, message: str, *, exc_info: Any = None, **fields: Any) -> None:
        """
        Log message with the current context plus per-call fields.

        Accepted fields are those of LogContext (operation, correlation_id,
        operation_id, feed_url, item_id, extra_fields).
        """
        context = (self.get_current_context() or LogContext(component=self.component)).merged(**fields)
        extra = {name: getattr(context, name) for name in CONTEXT_FIELDS}
        extra["extra_fields"] = context.extra_fields
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **fields: Any) -> None:
        self.log(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.log(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.log(logging.ERROR, message, **fields)

    def critical(self, message: str, **fields: Any) -> None:
        self.log(logging.CRITICAL, message, **fields)

    def log_event(
        self,
        operation: str,
        outcome: str,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
        **details: Any
    ) -> None:
        """Log an operation lifecycle event, e.g. "sign_feed completed"."""
        payload = {"outcome": outcome, "duration_ms": duration_ms, "error": error, **details}
        payload = {key: value for key, value in payload.items() if value is not None}

        level = logging.WARNING if error else logging.INFO
        self.log(level, f"{operation} {outcome}", operation=operation, extra_fields=payload)


class LogContextManager:
    """Push a LogContext for the duration of a `with` block."""

    def __init__(self, logger: StructuredLogger, context: LogContext):
        self.logger = logger
        self.context = context

    def __enter__(self) -> LogContext:
        self.logger.push_context(self.context)
        return self.context

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.logger.pop_context()


def create_correlation_id() -> str:
    """Generate a new correlation ID."""
    return f"corr_{uuid.uuid4().hex[:16]}"


def create_operation_id(prefix: str = "op") -> str:
    """Generate a new time-ordered operation ID."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
