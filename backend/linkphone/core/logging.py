"""
The Link Phone - Structured Logging

Provides structured JSON logging with context injection for phone widget
and call session IDs. Phone numbers and credentials are automatically masked.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime
from typing import Optional


# =============================================================================
# Context Variables
# =============================================================================

phone_id_var: ContextVar[Optional[str]] = ContextVar('phone_id', default=None)
call_session_id_var: ContextVar[Optional[str]] = ContextVar('call_session_id', default=None)


# =============================================================================
# Masking Utilities
# =============================================================================

SENSITIVE_KEYS = {
    'phone', 'phone_number', 'phonenumber', 'number', 'from', 'to',
    'password', 'token', 'secret', 'authorization',
}


def mask_identifier(value: Optional[str], keep: int = 8) -> Optional[str]:
    """Truncate an identifier to its first ``keep`` characters."""
    if not value:
        return None
    return value[:keep] if len(value) > keep else value


def mask_sensitive_data(data: dict) -> dict:
    """
    Recursively mask sensitive fields in a dictionary.

    Sensitive fields: phone, number, password, token, secret, etc.
    """
    masked = {}
    for key, value in data.items():
        key_lower = key.lower()

        if any(s in key_lower for s in SENSITIVE_KEYS):
            if isinstance(value, str):
                masked[key] = f"***{value[-2:]}" if len(value) > 2 else "***"
            else:
                masked[key] = "[REDACTED]"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value

    return masked


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that injects context variables and masks sensitive data.

    Output format:
    {
        "timestamp": "2025-10-03T08:55:00.000Z",
        "level": "INFO",
        "logger": "linkphone.telephony.phone",
        "phone_id": "ph_ab12c",
        "call_session_id": "call-172",
        "message": "Human-readable message",
        "data": { ... }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        phone_id = phone_id_var.get()
        if phone_id:
            log_entry["phone_id"] = phone_id

        call_session_id = call_session_id_var.get()
        if call_session_id:
            log_entry["call_session_id"] = mask_identifier(call_session_id, keep=18)

        if hasattr(record, 'event_type'):
            log_entry["event_type"] = record.event_type

        if hasattr(record, 'data') and record.data:
            log_entry["data"] = mask_sensitive_data(record.data)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter for development.
    Includes timestamp, level, logger, and message with context.
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")

        context_parts = []

        phone_id = phone_id_var.get()
        if phone_id:
            context_parts.append(f"phone={phone_id}")

        call_session_id = call_session_id_var.get()
        if call_session_id:
            context_parts.append(f"call={mask_identifier(call_session_id, keep=18)}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        message = f"{timestamp} | {record.levelname:<8} | {record.name}{context_str} | {record.getMessage()}"

        if hasattr(record, 'data') and record.data:
            message += f" | {json.dumps(mask_sensitive_data(record.data), default=str)}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production, False for development)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(HumanReadableFormatter())

    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Context Managers
# =============================================================================

class LogContext:
    """
    Context manager for setting log context variables.

    Usage:
        with LogContext(phone_id="ph_ab12c", call_session_id="call-1700000000000"):
            logger.info("Placing call")
    """

    def __init__(
        self,
        phone_id: Optional[str] = None,
        call_session_id: Optional[str] = None,
    ):
        self._phone_id = phone_id
        self._call_session_id = call_session_id
        self._tokens = []

    def __enter__(self):
        if self._phone_id:
            self._tokens.append((phone_id_var, phone_id_var.set(self._phone_id)))
        if self._call_session_id:
            self._tokens.append(
                (call_session_id_var, call_session_id_var.set(self._call_session_id))
            )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False


# =============================================================================
# Structured Logger
# =============================================================================

class StructuredLogger:
    """
    Logger wrapper that supports structured data.

    Usage:
        logger = StructuredLogger(__name__)
        logger.info("Call logged", data={"session_id": "call-1700000000000"})
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, message: str, data: Optional[dict] = None, **kwargs):
        extra = {}
        if data:
            extra['data'] = data

        self._logger.log(level, message, extra=extra, **kwargs)

    def debug(self, message: str, data: Optional[dict] = None, **kwargs):
        self._log(logging.DEBUG, message, data, **kwargs)

    def info(self, message: str, data: Optional[dict] = None, **kwargs):
        self._log(logging.INFO, message, data, **kwargs)

    def warning(self, message: str, data: Optional[dict] = None, **kwargs):
        self._log(logging.WARNING, message, data, **kwargs)

    def error(self, message: str, data: Optional[dict] = None, **kwargs):
        self._log(logging.ERROR, message, data, **kwargs)

    def exception(self, message: str, data: Optional[dict] = None, **kwargs):
        self._log(logging.ERROR, message, data, exc_info=True, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
