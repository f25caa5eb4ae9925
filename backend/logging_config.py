"""
Driver Reconciliation - Structured JSON Logging

Provides structured logging for production environments.
Outputs JSON format for log aggregation; plain text in development.
"""

import logging
import json
import sys
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import traceback


# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName"
])

# Set by RequestContextFilter on every record
_CONTEXT_ATTRS = ("request_id", "operator")

# Extras written by log_reconciliation_event; lifted into an "audit" block
_AUDIT_ATTRS = ("event", "kind", "actor", "details")


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per log line.

    Reconciliation audit events get an "audit" block (event, kind, actor,
    details) so log queries can filter on them without digging into extras.
    """

    def __init__(self, service_name: str = "driver-reconciliation"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
        }

        context = {
            key: getattr(record, key) for key in _CONTEXT_ATTRS
            if getattr(record, key, None) is not None
        }
        if context:
            log_data["context"] = context

        if getattr(record, "event", None):
            log_data["audit"] = {
                key: getattr(record, key) for key in _AUDIT_ATTRS
                if hasattr(record, key)
            }

        if record.levelno >= logging.WARNING:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None,
            }

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
            and key not in _CONTEXT_ATTRS
            and not (key in _AUDIT_ATTRS and "audit" in log_data)
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """
    Development formatter; appends the request id and the audit event
    name when present.
    """

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        request_id = getattr(record, "request_id", None)
        if request_id:
            line = f"{line} [request={request_id}]"
        event = getattr(record, "event", None)
        if event:
            line = f"{line} [{event} kind={getattr(record, 'kind', '-')}]"
        return line


class RequestContextFilter(logging.Filter):
    """
    Adds request context (request id, operator) to log records.
    """

    def __init__(self):
        super().__init__()
        self._request_id: Optional[str] = None
        self._operator: Optional[str] = None

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        operator: Optional[str] = None
    ):
        self._request_id = request_id
        self._operator = operator

    def clear_request_context(self):
        self._request_id = None
        self._operator = None

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = self._request_id
        record.operator = self._operator
        return True


# Global request context filter instance
_request_context_filter: Optional[RequestContextFilter] = None


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "driver-reconciliation"
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        service_name: Service name for log aggregation

    Returns:
        Configured root logger
    """
    global _request_context_filter

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    if json_format:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(TextFormatter())

    _request_context_filter = RequestContextFilter()
    handler.addFilter(_request_context_filter)

    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)


def set_request_context(
    request_id: Optional[str] = None,
    operator: Optional[str] = None
):
    """Set request context for logging."""
    if _request_context_filter:
        _request_context_filter.set_request_context(request_id, operator)


def clear_request_context():
    """Clear request context."""
    if _request_context_filter:
        _request_context_filter.clear_request_context()
