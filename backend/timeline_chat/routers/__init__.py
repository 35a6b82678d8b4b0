"""
API Routers package.
"""

from .messaging import router as messaging_router
from .websocket import router as websocket_router

__all__ = [
    "messaging_router",
    "websocket_router"
]
