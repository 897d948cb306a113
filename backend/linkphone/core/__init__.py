"""
The Link Phone - Core Package

Cross-cutting concerns shared by the telephony and API layers:
- exceptions: Error hierarchy with API error codes
- logging: Structured logging with phone/call context
"""

from .exceptions import LinkPhoneError
from .logging import LogContext, get_logger, setup_structured_logging

__all__ = [
    "LinkPhoneError",
    "LogContext",
    "get_logger",
    "setup_structured_logging",
]
