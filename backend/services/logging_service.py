"""
Structured Logging Configuration for the poker store

Provides:
- JSON-formatted structured logging
- Game/user correlation from record fields
- Operation timing
"""
import os
import sys
import json
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Callable
from functools import wraps


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.
    Outputs logs in a format suitable for log aggregation tools.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "poker_id": getattr(record, "poker_id", ""),
            "user_id": getattr(record, "user_id", ""),
        }

        # Add location info
        log_data["location"] = {
            "file": record.filename,
            "line": record.lineno,
            "function": record.funcName
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        # Add extra fields
        extra_fields = {}
        for key, value in record.__dict__.items():
            if key not in {
                "name", "msg", "args", "created", "filename", "funcName",
                "levelname", "levelno", "lineno", "module", "msecs",
                "pathname", "process", "processName", "relativeCreated",
                "stack_info", "exc_info", "exc_text", "thread", "threadName",
                "taskName", "message", "poker_id", "user_id"
            }:
                try:
                    json.dumps(value)  # Check if serializable
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data)


def log_operation(
    operation_name: str,
    logger: logging.Logger = None
) -> Callable:
    """
    Decorator to log async function execution with timing.

    Usage:
        @log_operation("purge_old_poker_games")
        async def purge_old_games(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            op_logger = logger or logging.getLogger(f"poker.operations.{operation_name}")
            start_time = time.time()

            op_logger.info(
                f"Operation started: {operation_name}",
                extra={
                    "event_type": "operation_start",
                    "operation": operation_name,
                }
            )

            try:
                result = await func(*args, **kwargs)

                duration_ms = (time.time() - start_time) * 1000
                op_logger.info(
                    f"Operation completed: {operation_name}",
                    extra={
                        "event_type": "operation_complete",
                        "operation": operation_name,
                        "duration_ms": round(duration_ms, 2),
                    }
                )

                return result

            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                op_logger.error(
                    f"Operation failed: {operation_name} - {type(e).__name__}",
                    extra={
                        "event_type": "operation_error",
                        "operation": operation_name,
                        "duration_ms": round(duration_ms, 2),
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                    exc_info=True
                )
                raise

        return wrapper
    return decorator


def setup_logging(
    level: Optional[str] = None,
    json_format: bool = True,
    log_file: Optional[str] = None
):
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR); defaults to LOG_LEVEL
        json_format: Use JSON formatting for structured logging
        log_file: Optional file path to write logs
    """
    level = level or os.environ.get("LOG_LEVEL", "INFO")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Clear existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)

    if json_format and os.environ.get("LOG_FORMAT", "json") == "json":
        console_handler.setFormatter(StructuredJSONFormatter())
    else:
        console_handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    root_logger.addHandler(console_handler)

    # File handler if specified
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredJSONFormatter())
        root_logger.addHandler(file_handler)

    # Silence noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return root_logger
