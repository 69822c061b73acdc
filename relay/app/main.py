import asyncio
import contextlib
import traceback
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from relay.app.api.proxy import router as proxy_router
from relay.app.core.config import Settings, settings as default_settings
from relay.app.core.http_client import get_http_client, init_http_client
from relay.app.core.logging import get_logger, setup_logging
from relay.app.exceptions import RelayException
from relay.app.middleware.logging import RequestLoggingMiddleware
from relay.app.middleware.rate_limit import FixedWindowRateLimiter, RateLimitMiddleware
from relay.app.services.forwarder import ProxyForwarder
from relay.app.services.resolver import build_resolver
from relay.app.services.rewriter import build_rewrite_rule


def create_app(config: Optional[Settings] = None) -> FastAPI:
    """Create and configure the relay application.

    Pipeline, outermost first: request logging, rate limiting, then the
    catch-all route that resolves the upstream, forwards and rewrites.

    Args:
        config: Settings to use instead of the environment-loaded ones

    Returns:
        Configured FastAPI application instance
    """
    config = config or default_settings

    setup_logging(config)
    logger = get_logger(__name__)

    limiter = FixedWindowRateLimiter(
        limit=config.rate_limit_requests,
        window_seconds=config.rate_limit_window_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Open the shared upstream client and the optional limiter sweep."""
        async with init_http_client(config):
            sweeper: Optional[asyncio.Task] = None
            if config.rate_limit_cleanup_interval_seconds > 0:
                sweeper = asyncio.create_task(
                    limiter.run_cleanup_loop(config.rate_limit_cleanup_interval_seconds)
                )

            logger.info(
                "Relay startup complete",
                extra={
                    "target_source": config.target_source,
                    "rewrite_mode": config.rewrite_mode,
                    "rate_limit": f"{config.rate_limit_requests}/{config.rate_limit_window_seconds}s",
                },
            )
            try:
                yield
            finally:
                if sweeper is not None:
                    sweeper.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await sweeper

        logger.info("Relay shutdown complete")

    app = FastAPI(
        title="Relay",
        description="Forward-anywhere reverse proxy with rate limiting, CORS and response rewriting",
        version="1.0.0",
        lifespan=lifespan,
        # Every path belongs to the proxy route
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    rule = build_rewrite_rule(config)
    app.state.settings = config
    app.state.rate_limiter = limiter
    app.state.resolver = build_resolver(config)
    app.state.forwarder = ProxyForwarder(
        client_factory=get_http_client,
        rule=rule,
        scheme=config.upstream_scheme,
        marker_header=config.rewrite_marker_header,
        marker_value=config.rewrite_marker_value,
    )

    # Add middleware (order matters: last added = first executed)
    # Rate limit middleware (before any upstream work)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=limiter,
        trust_forwarded_for=config.rate_limit_trust_forwarded_for,
    )

    # Request logging (outermost - sees rejections too)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(proxy_router)

    @app.exception_handler(RelayException)
    async def relay_exception_handler(request: Request, exc: RelayException) -> PlainTextResponse:
        """Turn relay errors into plain-text responses with their status code."""
        return PlainTextResponse(exc.message, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.

        The traceback is logged server-side and never returned; debug mode
        adds the exception message to the body.
        """
        logger.exception(
            f"Unhandled exception on {request.method} {request.url.path}",
            extra={
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
                "traceback": traceback.format_exc(),
            },
        )

        content = {"error": "internal_error", "message": "Internal server error"}
        if config.debug:
            content["message"] = str(exc)
            content["exception_type"] = type(exc).__name__
        return JSONResponse(status_code=500, content=content)

    return app


def run() -> None:
    """Start the relay with uvicorn on HOST:PORT."""
    import uvicorn

    uvicorn.run(
        "relay.app.main:app",
        host=default_settings.host,
        port=default_settings.port,
        log_config=None,
    )


# Create the application instance
app = create_app()


if __name__ == "__main__":
    run()
