"""
HTTP surface of the campaign core.

This package provides a single FastAPI application that exposes:
- The purchase validation and ticket issuance function
- The email and WhatsApp dispatch functions
- Dispatch of queued notification log entries
"""

from api.main import app

__all__ = ["app"]
