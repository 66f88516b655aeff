"""
Structured logging configuration for production deployments.

Outputs logs in JSON format for easy parsing by log aggregators
(ELK stack, Datadog, CloudWatch, etc.)
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Record attributes copied into JSON output when a log call supplies them
# through ``extra=``.
CONTEXT_FIELDS = (
    "subscription_id",
    "entity_id",
    "attribute_name",
    "change_type",
    "event_type",
    "batch_count",
    "depth",
)


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs logs in JSON format.

    Each log entry includes:
    - timestamp (ISO 8601)
    - level (INFO, WARNING, ERROR, etc.)
    - logger name
    - message
    - Change-event context fields (if provided)
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        return json.dumps(log_data, default=str)


def configure_structured_logging(
    level: str = "INFO",
    enable_json: bool = False,
) -> None:
    """
    Configure structured logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_json: If True, use JSON format. If False, use standard format.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper()))

    if enable_json:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Keep uvicorn's own loggers at INFO regardless of the app level
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
