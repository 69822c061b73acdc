"""Shared HTTP client management for upstream connection pooling.

The client is initialized on application startup and shared by every
proxied request, so connections to frequently used upstreams are reused.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx

from relay.app.core.config import Settings, settings as default_settings


# Shared HTTP client for connection pooling
_shared_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client instance.

    Raises:
        RuntimeError: If the HTTP client has not been initialized.
    """
    if _shared_http_client is None:
        raise RuntimeError(
            "HTTP client not initialized. Ensure lifespan context is active."
        )
    return _shared_http_client


def create_http_client(config: Optional[Settings] = None) -> httpx.AsyncClient:
    """Create an upstream client with the configured timeouts and pool limits.

    Redirects are never followed: the caller gets the upstream's 3xx as-is.
    """
    config = config or default_settings

    limits = httpx.Limits(
        max_connections=config.httpx_max_connections,
        max_keepalive_connections=config.httpx_max_keepalive_connections,
        keepalive_expiry=config.httpx_keepalive_expiry,
    )

    # - connect: Time to establish socket connection
    # - read: Time between upstream body chunks
    # - write: Time to send request data
    # - pool: Time to acquire connection from pool
    timeout = httpx.Timeout(
        connect=config.httpx_connect_timeout,
        read=config.httpx_read_timeout,
        write=config.httpx_write_timeout,
        pool=config.httpx_pool_timeout,
    )

    return httpx.AsyncClient(timeout=timeout, limits=limits, follow_redirects=False)


@asynccontextmanager
async def init_http_client(
    config: Optional[Settings] = None,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Initialize and yield the shared HTTP client.

    This context manager should be used in the FastAPI lifespan:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            async with init_http_client():
                yield
    """
    global _shared_http_client

    _shared_http_client = create_http_client(config)

    try:
        yield _shared_http_client
    finally:
        if _shared_http_client is not None:
            await _shared_http_client.aclose()
            _shared_http_client = None
