"""
HTTP surface of the notification engine.

This package provides a single FastAPI application that exposes:
- The notification listing and read-state endpoints
- Settings and statistics endpoints
- The live notification WebSocket
"""

from api.main import app

__all__ = ["app"]
