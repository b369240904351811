"""Structured JSON logging with execution trace context."""
import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from flowmesh.config import get_settings

TRACE_FIELDS = (
    "execution_id",
    "workflow_id",
    "node_id",
    "provider",
    "operation",
    "user_id",
)


class TraceContextFilter(logging.Filter):
    """Add execution trace context to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add default trace context fields if not present."""
        for name in TRACE_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with standardized field names."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        """Add custom fields to the log record."""
        super().add_fields(log_record, record, message_dict)

        # Ensure timestamp is present
        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)

        log_record["level"] = record.levelname
        log_record["logger"] = record.name

        # Only emit trace fields that carry a value
        for name in TRACE_FIELDS:
            value = getattr(record, name, None)
            if value:
                log_record[name] = value
            else:
                log_record.pop(name, None)


def setup_logging() -> None:
    """Configure structured JSON logging for the engine."""
    settings = get_settings()

    handler = logging.StreamHandler(sys.stderr)

    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    handler.addFilter(TraceContextFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.log_level)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.LoggerAdapter:
    """
    Get a logger with trace context support.

    Args:
        name: Logger name (typically __name__)

    Returns:
        LoggerAdapter that can accept trace context in extra dict
    """
    logger = logging.getLogger(name)
    return logging.LoggerAdapter(logger, extra={})


def with_trace_context(
    execution_id: str | None = None,
    workflow_id: str | None = None,
    node_id: str | None = None,
    provider: str | None = None,
    operation: str | None = None,
    user_id: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Create an extra dict with trace context for logging.

    Args:
        execution_id: Execution run ID
        workflow_id: Workflow ID
        node_id: Node being executed
        provider: Provider adapter name
        operation: Operation being executed
        user_id: User the run belongs to
        **kwargs: Additional context fields

    Returns:
        Dict to pass as extra parameter to logger methods
    """
    extra = kwargs.copy()
    if execution_id:
        extra["execution_id"] = execution_id
    if workflow_id:
        extra["workflow_id"] = workflow_id
    if node_id:
        extra["node_id"] = node_id
    if provider:
        extra["provider"] = provider
    if operation:
        extra["operation"] = operation
    if user_id:
        extra["user_id"] = user_id
    return extra
