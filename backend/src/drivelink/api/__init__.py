"""
API package for DriveLink.

This package contains the FastAPI routers for the plugin's HTTP surface.
"""

from .command import router as command_router
from .health import router as health_router
from .oauth import router as oauth_router
from .reply import router as reply_router
from .webhook import router as webhook_router

__all__ = [
    "command_router",
    "health_router",
    "oauth_router",
    "reply_router",
    "webhook_router",
]
