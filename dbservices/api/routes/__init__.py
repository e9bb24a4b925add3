"""API route handlers."""

from .services import router as services_router
from .websocket import router as websocket_router

__all__ = ["services_router", "websocket_router"]
