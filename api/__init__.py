"""
HTTP API for the Carvizio notification service.

This package provides a single FastAPI application that exposes:
- Notification preference read/update for service providers
- The browser inbox polled and acknowledged by the watchdog
- An admin endpoint forcing a digest flush
"""

from api.main import app, create_app

__all__ = ["app", "create_app"]
