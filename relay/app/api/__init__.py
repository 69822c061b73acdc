"""API endpoints package for the relay."""

from relay.app.api.proxy import router as proxy_router

__all__ = [
    "proxy_router",
]
