"""
Structured JSON logging for the nutrition coach.
Every line carries the bound context (user, request) plus per-call fields.
"""

import os
import logging
import uuid
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with bound context."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.context: Dict[str, Any] = {}

    def bind(self, **fields) -> "StructuredLogger":
        """Return a child logger whose lines always include `fields`."""
        child = StructuredLogger(self.logger.name)
        child.context = {**self.context, **fields}
        return child

    def log(self, level: str, message: str, exc_info: bool = False, **kwargs):
        """Log message with structured context.

        Args:
            level: Log level ('debug', 'info', 'warning', 'error', 'critical')
            message: Log message
            exc_info: Attach the active exception traceback
            **kwargs: Additional fields to include in JSON
        """
        extra = {**self.context, **kwargs}
        getattr(self.logger, level)(message, exc_info=exc_info, extra=extra)

    def debug(self, message: str, **kwargs):
        self.log("debug", message, **kwargs)

    def info(self, message: str, **kwargs):
        self.log("info", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.log("warning", message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs):
        self.log("error", message, exc_info=exc_info, **kwargs)

    def log_request(self, method: str, endpoint: str, user_id: Optional[str] = None) -> str:
        """Log an incoming API request and return its request id."""
        request_id = str(uuid.uuid4())
        self.info(f"{method} {endpoint} received", request_id=request_id,
                  user_id=user_id, endpoint=endpoint, method=method)
        return request_id

    def log_ai_request(self, provider: str, model: str, prompt_chars: int,
                       waited_ms: float, duration_ms: float, error: Optional[str] = None):
        """Log one dispatched completion call."""
        log_data = {
            "provider": provider,
            "model": model,
            "prompt_chars": prompt_chars,
            "cooldown_wait_ms": round(waited_ms, 2),
            "duration_ms": round(duration_ms, 2),
        }
        if error:
            self.error(f"AI request to {provider} failed", error=error, **log_data)
        else:
            self.info(f"AI request to {provider} completed", **log_data)

    def log_rate_limit_exceeded(self, provider: str, error: str):
        """Log a provider-side rate limit."""
        self.warning(f"Rate limit hit on {provider}", provider=provider, error=error)

    def log_database_query(self, table: str, operation: str, rows_affected: int,
                           error: Optional[str] = None):
        """Log a storage read/write."""
        log_data = {
            "table": table,
            "operation": operation,
            "rows_affected": rows_affected,
        }
        if error:
            self.error(f"Database error: {operation} on {table}", error=error, **log_data)
        else:
            self.debug(f"Database {operation} on {table}", **log_data)

    def log_recommendation(self, user_id: str, recommendation_type: str, confidence: float):
        """Log a generated recommendation."""
        self.info(
            f"Recommendation generated: {recommendation_type}",
            user_id=user_id,
            recommendation_type=recommendation_type,
            confidence=round(confidence, 3),
        )


def setup_json_logging(log_file: Optional[str] = None, level: int = logging.INFO):
    """Setup JSON logging to console and, optionally, a file.

    Args:
        log_file: Optional file path for JSON logs
        level: Root log level
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    json_formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s"
    )

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(json_formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(json_formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(
            f"JSON logging initialized to {log_file}",
            extra={"started_at": datetime.now(timezone.utc).isoformat()},
        )


logger = StructuredLogger("coach")
