"""Core utilities for the relay application."""

from relay.app.core.config import Settings, settings
from relay.app.core.context import ProxyRequestContext, get_proxy_context
from relay.app.core.logging import get_logger, setup_logging

__all__ = [
    "Settings",
    "settings",
    "ProxyRequestContext",
    "get_proxy_context",
    "get_logger",
    "setup_logging",
]
