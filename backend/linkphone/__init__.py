"""
The Link Phone - Backend Application Package

This package contains the softphone service:
- telephony: Call session state machine, call logging, phone adapters
- api: HTTP control surface for phone widgets
- core: Exceptions and structured logging
"""

__version__ = "0.1.0"
