"""Structured logging with correlation ids."""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone

from gradeflow.config import Settings

# Correlation id of the submission or job being processed
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str:
    """Get or generate the correlation id for the current context."""
    correlation_id = correlation_id_var.get()
    if correlation_id is None:
        correlation_id = uuid.uuid4().hex
        correlation_id_var.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


class StructuredFormatter(logging.Formatter):
    """Formats records as JSON lines or as an indented human-readable block."""

    def __init__(self, as_json: bool = False):
        super().__init__()
        self._as_json = as_json

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).isoformat()
        context = getattr(record, "context", None)

        if self._as_json:
            log_data = {
                "timestamp": timestamp,
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
                "correlation_id": get_correlation_id(),
            }
            if context:
                log_data["context"] = context
            if record.exc_info:
                log_data["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_data, default=str)

        parts = [
            f"{timestamp} [{record.levelname}] {record.name} "
            f"[{get_correlation_id()[:8]}] {record.getMessage()}"
        ]
        if context:
            parts.append(f"  Context: {context}")
        if record.exc_info:
            parts.append(f"  Error: {self.formatException(record.exc_info)}")
        return "\n".join(parts)


def setup_logging(settings: Settings) -> None:
    """Install a single stdout handler on the root logger."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredFormatter(as_json=settings.log_json))
    root_logger.addHandler(console_handler)
    root_logger.setLevel(getattr(logging, settings.log_level))

    # Reduce noise from third-party libraries
    for noisy in ("httpx", "httpcore", "openai", "aiosqlite"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
