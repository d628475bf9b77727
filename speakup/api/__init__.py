"""
API module for the SpeakUp backend.

This module contains the API endpoints:
- WebSocket endpoint for the real-time capture pipeline
- HTTP endpoints for chat, feedback, voices and health
"""

from .routes import router as http_router
from .websocket import router as websocket_router

__all__ = [
    "http_router",
    "websocket_router",
]
