import logging
import json
import os
import sys
from pathlib import Path
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Fields passed via logger.info("event", extra={...}) that are copied into JSON output
EXTRA_FIELDS = (
    "method", "path", "status", "duration_ms", "client_ip",
    "error", "error_type", "service", "circuit_state",
    "assignment_id", "snippet_id", "batch", "batches", "processed", "total",
    "percent", "queue", "queue_length", "created", "updated", "count",
    "poll_timeout", "attempt", "wait_seconds",
)


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter with correlation ID injection"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Set by correlation middleware
        if getattr(record, "correlation_id", None):
            entry["correlation_id"] = record.correlation_id
        if getattr(record, "user_id", None):
            entry["user_id"] = record.user_id

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.filename}:{record.lineno}"

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter for local development"""

    def __init__(self):
        super().__init__(
            '%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )


def setup_logger(name: str = "snippet_admin", level: str = "INFO") -> logging.Logger:
    """
    Setup application logger.

    JSON to stdout when LOG_FORMAT=json (or on Railway), readable lines otherwise.
    Local development also gets a rotating JSON log file.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    is_production = bool(os.getenv("RAILWAY_ENVIRONMENT")) or os.getenv("LOG_FORMAT") == "json"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(StructuredFormatter() if is_production else SimpleFormatter())
    logger.addHandler(console_handler)

    if not is_production and os.getenv("LOG_TO_FILE", "false").lower() == "true":
        try:
            log_dir = Path("logs")
            log_dir.mkdir(exist_ok=True)

            file_handler = RotatingFileHandler(
                log_dir / "snippet_admin.log",
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(StructuredFormatter())
            logger.addHandler(file_handler)
        except OSError as e:
            # Read-only filesystem in containers
            logger.warning(f"Could not setup file logging: {e}")

    return logger


# Create default logger instance
logger = setup_logger()


def get_logger(name: str = None) -> logging.Logger:
    """Get logger instance"""
    if name:
        return setup_logger(name)
    return logger
