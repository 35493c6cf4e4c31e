"""Logging configuration for the automation engine."""

import logging
import sys
import json
import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from pathlib import Path


LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class StructuredFormatter(logging.Formatter):
    """Formatter emitting one JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_fields'):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class EngineContextFilter(logging.Filter):
    """Filter that merges process-wide context fields into every record."""

    def __init__(self):
        super().__init__()
        self._context: Dict[str, Any] = {}

    def set_context(self, **kwargs):
        self._context.update(kwargs)

    def clear_context(self):
        self._context.clear()

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'extra_fields'):
            record.extra_fields = {}
        for key, value in self._context.items():
            record.extra_fields.setdefault(key, value)
        return True


_context_filter = EngineContextFilter()


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Configure logging for the automation engine.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        log_format: Custom log format string
        structured: Whether to use structured JSON logging
        max_size: Maximum log file size in bytes before rotation
        backup_count: Number of backup files to keep

    Returns:
        Root logger instance
    """
    if structured:
        formatter = StructuredFormatter()
    else:
        if log_format is None:
            log_format = "%(asctime)s - %(name)s - %(levelname)s - [%(module)s:%(funcName)s:%(lineno)d] - %(message)s"
        formatter = logging.Formatter(fmt=log_format, datefmt="%Y-%m-%d %H:%M:%S")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(_context_filter)
    root_logger.addHandler(console_handler)

    if log_file:
        from logging.handlers import RotatingFileHandler

        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size,
            backupCount=backup_count
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_context_filter)
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger("automation_engine.core").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.INFO)
    logging.getLogger("automation_engine.execution").setLevel(logging.DEBUG if level.upper() == "DEBUG" else logging.INFO)
    logging.getLogger("automation_engine.api").setLevel(logging.INFO)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given name."""
    return logging.getLogger(name)


def set_logging_context(**kwargs):
    """Set context fields for all subsequent log messages."""
    _context_filter.set_context(**kwargs)


def clear_logging_context():
    """Clear all logging context fields."""
    _context_filter.clear_context()


def resolve_level(level) -> int:
    """Map a level name ('info', 'warn', ...) or number to a logging level."""
    if isinstance(level, int):
        return level
    return LEVELS.get(str(level).lower(), logging.INFO)


def log_with_context(logger: logging.Logger, level, message: str, **context):
    """Log a message with additional structured context fields."""
    extra = {"extra_fields": context}
    logger.log(resolve_level(level), message, extra=extra)


class ExecutionLogger:
    """Observability hook tagging every record with its execution."""

    def __init__(self, execution_id: str, workflow_id: Optional[str] = None):
        self.logger = get_logger("automation_engine.execution")
        self.execution_id = execution_id
        self.workflow_id = workflow_id

    def log(self, level, message: str, data: Optional[Dict[str, Any]] = None):
        fields = dict(data or {})
        fields["execution_id"] = self.execution_id
        if self.workflow_id:
            fields["workflow_id"] = self.workflow_id
        log_with_context(self.logger, level, message, **fields)


class ErrorRecoveryLogger:
    """Specialized logger for retry and recovery operations."""

    def __init__(self, component_name: str):
        self.logger = get_logger(f"automation_engine.recovery.{component_name}")
        self.component_name = component_name

    def log_recovery_attempt(self, operation: str, error, attempt: int, max_attempts: int, **context):
        """Log a failed attempt that will be retried."""
        log_with_context(
            self.logger, logging.WARNING,
            f"Recovery attempt {attempt}/{max_attempts} for {operation}",
            component=self.component_name,
            operation=operation,
            error_type=type(error).__name__ if isinstance(error, BaseException) else "DispatchFailure",
            error_message=str(error),
            attempt=attempt,
            max_attempts=max_attempts,
            **context
        )

    def log_recovery_success(self, operation: str, attempts_used: int, **context):
        log_with_context(
            self.logger, logging.INFO,
            f"Successfully recovered from {operation} after {attempts_used} attempts",
            component=self.component_name,
            operation=operation,
            attempts_used=attempts_used,
            recovery_status="success",
            **context
        )

    def log_recovery_failure(self, operation: str, final_error, attempts_used: int, **context):
        log_with_context(
            self.logger, logging.ERROR,
            f"Failed to recover from {operation} after {attempts_used} attempts",
            component=self.component_name,
            operation=operation,
            error_type=type(final_error).__name__ if isinstance(final_error, BaseException) else "DispatchFailure",
            error_message=str(final_error),
            attempts_used=attempts_used,
            recovery_status="failed",
            **context
        )
