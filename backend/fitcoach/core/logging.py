"""
Logging configuration.

JSON lines in production, plain text in development.
"""
import logging
import sys
import json
import datetime as dt
from typing import Any, Dict

from fitcoach.config import settings


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging() -> logging.Logger:
    """
    Configure the ``fitcoach`` logger tree.

    Only the application loggers are touched; uvicorn keeps its own handlers.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.is_dev:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    else:
        formatter = JSONFormatter()

    app_logger = logging.getLogger("fitcoach")
    app_logger.setLevel(log_level)
    app_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)
    app_logger.propagate = False

    # Tortoise logs every query at DEBUG
    logging.getLogger("tortoise").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return app_logger
