"""Request logging middleware.

Emits exactly one line per request once the inner application is done,
whatever the outcome: proxied, rate limited, rejected for a missing
target or failed at the upstream.
"""

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from relay.app.core.context import ProxyRequestContext, attach_proxy_context
from relay.app.core.logging import get_logger

logger = get_logger(__name__)


class RequestLoggingMiddleware:
    """ASGI middleware that times requests and logs their final status.

    The status is taken from the ``http.response.start`` message that was
    actually sent, so error responses produced by inner layers are logged
    with their own codes.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        context = ProxyRequestContext.from_scope(scope)
        attach_proxy_context(scope, context)

        async def wrapped_send(message: Message) -> None:
            if message["type"] == "http.response.start":
                context.status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, wrapped_send)
        except Exception:
            if context.status_code is None:
                context.status_code = 500
            raise
        finally:
            self._log(context)

    @staticmethod
    def _log(context: ProxyRequestContext) -> None:
        duration_ms = round(context.duration_ms, 3)
        logger.info(
            "Method: %s\tURL: %s\tHeaders: %s\tStatus: %s\tDuration: %.3fms",
            context.method,
            context.url,
            context.headers,
            context.status_code,
            duration_ms,
            extra={
                "method": context.method,
                "url": context.url,
                "headers": context.headers,
                "client_id": context.client_id,
                "upstream": context.upstream_host,
                "status_code": context.status_code,
                "duration_ms": duration_ms,
            },
        )
