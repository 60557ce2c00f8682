"""
Structured logging configuration.

JSON lines in production (one object per record, easy to ship to a log
aggregator); a plain text format for local development.

Callers attach structured context through the ``extra_fields`` convention:

    logger.info("Attempt started", extra={"extra_fields": {"attempt_id": str(a.id)}})
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

AUDIT_LOGGER_NAME = "coach_assess.audit"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            log_data.update(extra_fields)

        return json.dumps(log_data, default=str)


def _build_formatter() -> logging.Formatter:
    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        return JSONFormatter()
    return logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def setup_logging() -> logging.Logger:
    """
    Configure application-wide logging.

    Idempotent: replaces root handlers on every call, so importing modules in
    any order (app, tests, alembic) ends with exactly one stdout handler.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    formatter = _build_formatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Audit lines always go out, even when the app runs at WARNING.
    logging.getLogger(AUDIT_LOGGER_NAME).setLevel(logging.INFO)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)

    return root_logger


# Initialize logging on import
setup_logging()
