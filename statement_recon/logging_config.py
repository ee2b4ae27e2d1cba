"""
Structured logging configuration for the statement reconciliation tool.
"""
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
import json
from typing import Any, Dict


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    log_file: str = None,
    json_format: bool = False
) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output
        json_format: Use JSON formatting for structured logs

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger("statement_recon")
    logger.setLevel(getattr(logging, level.upper()))

    # Clear existing handlers
    logger.handlers.clear()

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = None) -> logging.Logger:
    """Get a logger instance."""
    if name:
        return logging.getLogger(f"statement_recon.{name}")
    return logging.getLogger("statement_recon")


# Convenience functions for structured logging
def log_parse_warning(logger: logging.Logger, warning: str, file_name: str = None):
    """Log a non-fatal statement parse warning."""
    logger.warning(
        f"Statement warning: {warning}",
        extra={"extra_data": {
            "event": "parse_warning",
            "file_name": file_name,
            "warning": warning
        }}
    )


def log_import_start(logger: logging.Logger, tenant_id: str, file_name: str, transaction_count: int):
    """Log the start of a statement import."""
    logger.info(
        f"Importing statement {file_name} | tenant={tenant_id} | txns={transaction_count}",
        extra={"extra_data": {
            "event": "import_start",
            "tenant_id": tenant_id,
            "file_name": file_name,
            "transaction_count": transaction_count
        }}
    )


def log_import_complete(
    logger: logging.Logger,
    tenant_id: str,
    pending: int,
    rehydrated: int,
    suggestions: int,
    duration_seconds: float
):
    """Log the reconciliation item build with metrics."""
    logger.info(
        f"Reconciliation items ready | tenant={tenant_id} | pending={pending} | "
        f"rehydrated={rehydrated} | suggestions={suggestions} | time={duration_seconds:.2f}s",
        extra={"extra_data": {
            "event": "import_complete",
            "tenant_id": tenant_id,
            "pending_count": pending,
            "rehydrated_count": rehydrated,
            "suggestion_count": suggestions,
            "duration_seconds": duration_seconds
        }}
    )


def log_action(
    logger: logging.Logger,
    action: str,
    fit_id: str,
    status: str,
    entry_id: str = None,
    score: int = None
):
    """Log a reconciliation decision."""
    logger.info(
        f"Reconciliation {action}: fit_id={fit_id} -> {status} | entry={entry_id or '-'}",
        extra={"extra_data": {
            "event": "reconciliation_action",
            "action": action,
            "fit_id": fit_id,
            "status": status,
            "entry_id": entry_id,
            "match_score": score
        }}
    )


def log_error(
    logger: logging.Logger,
    error: Exception,
    context: str = None,
    extra: Dict[str, Any] = None
):
    """Log an error with context."""
    extra_data = {"event": "error", "error_type": type(error).__name__}
    if context:
        extra_data["context"] = context
    if extra:
        extra_data.update(extra)

    logger.error(
        f"Error: {error} | context={context or 'none'}",
        exc_info=True,
        extra={"extra_data": extra_data}
    )
