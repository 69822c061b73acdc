"""Proxy forwarding to a dynamically resolved upstream.

The forwarder rebuilds the inbound request against the upstream host,
dispatches it through the shared httpx client and returns a response
object that streams the upstream reply back through the rewriter.
"""

from typing import Callable, Dict, List, Optional, Tuple

import httpx
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from relay.app.core.logging import get_logger
from relay.app.exceptions import ResponseWriteError, UpstreamError
from relay.app.services.rewriter import RewriteRule, RewritingWriter
from relay.app.services.writer import ASGIResponseWriter

logger = get_logger(__name__)

# Hop-by-hop headers that must not be forwarded (RFC 7230 section 6.1)
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

CORS_ALLOWED_METHODS = "GET, PUT, PATCH, POST, DELETE"

# Bodies are decoded and may change length, so these are recomputed downstream
_STRIPPED_RESPONSE_HEADERS = frozenset({"content-length", "content-encoding"})


def build_cors_headers(request: Request) -> Dict[str, str]:
    """CORS headers for every forwarded reply, preflight or not."""
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": CORS_ALLOWED_METHODS,
        "Access-Control-Allow-Headers": request.headers.get(
            "access-control-request-headers", ""
        ),
    }


def build_upstream_url(request: Request, host: str, scheme: str = "http") -> str:
    """Target URL keeping the inbound path and raw query string."""
    url = f"{scheme}://{host}{request.url.path}"
    query = request.scope.get("query_string", b"")
    if query:
        url = f"{url}?{query.decode('latin-1')}"
    return url


def prepare_upstream_headers(request: Request) -> List[Tuple[str, str]]:
    """Copy inbound headers minus hop-by-hop ones and ``Host``.

    httpx derives ``Host`` from the upstream URL. The client address is
    appended to ``X-Forwarded-For``.
    """
    connection_tokens = {
        token.strip().lower()
        for token in request.headers.get("connection", "").split(",")
        if token.strip()
    }
    dropped = HOP_BY_HOP_HEADERS | connection_tokens | {"host", "x-forwarded-for"}

    headers = [
        (name, value)
        for name, value in request.headers.items()
        if name.lower() not in dropped
    ]

    client_ip = request.client.host if request.client else None
    prior = ", ".join(request.headers.getlist("x-forwarded-for"))
    if client_ip:
        forwarded_for = f"{prior}, {client_ip}" if prior else client_ip
    else:
        forwarded_for = prior
    if forwarded_for:
        headers.append(("x-forwarded-for", forwarded_for))
    return headers


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


class UpstreamResponse(Response):
    """Streams an upstream httpx response to the caller through a rewriter.

    Status and headers come from the upstream; the CORS headers given by
    the forwarder replace any upstream copies.
    """

    def __init__(
        self,
        upstream: httpx.Response,
        rule: RewriteRule,
        extra_headers: Optional[Dict[str, str]] = None,
        marker_header: str = "X-Custom-Response-Header",
        marker_value: str = "Modified-Response",
    ):
        self.upstream = upstream
        self.rule = rule
        self.marker_header = marker_header
        self.marker_value = marker_value
        self.status_code = upstream.status_code
        self.background = None

        extra_headers = extra_headers or {}
        skipped = (
            HOP_BY_HOP_HEADERS
            | _STRIPPED_RESPONSE_HEADERS
            | {name.lower() for name in extra_headers}
        )
        # ASGI header names must be lowercase; httpx keeps the upstream casing
        self.raw_headers = [
            (name.lower(), value)
            for name, value in upstream.headers.raw
            if name.decode("latin-1").lower() not in skipped
        ]
        self.raw_headers.extend(
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in extra_headers.items()
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        writer = RewritingWriter(
            ASGIResponseWriter(send, self.status_code, self.raw_headers),
            self.rule,
            self.marker_header,
            self.marker_value,
        )
        try:
            async for chunk in self.upstream.aiter_bytes():
                if chunk:
                    await writer.write(chunk)
            await writer.close()
        except ResponseWriteError as exc:
            logger.warning(
                f"Aborted response from {self.upstream.request.url.host}: {exc}"
            )
        except httpx.HTTPError as exc:
            # Status line is already out; dropping the connection is all that is left
            logger.error(
                f"Upstream {self.upstream.request.url.host} failed mid-body: {exc!r}"
            )
            raise
        finally:
            await self.upstream.aclose()

        if self.background is not None:
            await self.background()


class ProxyForwarder:
    """Forwards requests to the upstream named by the resolver."""

    def __init__(
        self,
        client_factory: Callable[[], httpx.AsyncClient],
        rule: RewriteRule,
        scheme: str = "http",
        marker_header: str = "X-Custom-Response-Header",
        marker_value: str = "Modified-Response",
    ):
        """Initialize the forwarder.

        Args:
            client_factory: Returns the shared upstream client
            rule: Rewrite rule applied to every response body write
            scheme: Scheme forced on every upstream URL
            marker_header: Header added to every rewritten response
            marker_value: Value of the marker header
        """
        self._client_factory = client_factory
        self.rule = rule
        self.scheme = scheme
        self.marker_header = marker_header
        self.marker_value = marker_value

    async def forward(self, request: Request, host: str) -> Response:
        """Send ``request`` to ``host`` and return the streaming reply.

        Upstream 4xx/5xx answers are passed through unchanged.

        Raises:
            UpstreamError: If the upstream cannot be reached or the URL
                built from ``host`` is not valid
        """
        cors_headers = build_cors_headers(request)
        url = build_upstream_url(request, host, self.scheme)
        client = self._client_factory()

        try:
            upstream_request = client.build_request(
                request.method,
                url,
                headers=prepare_upstream_headers(request),
                content=request.stream() if _has_body(request) else None,
            )
            upstream = await client.send(upstream_request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(f"Upstream request to {host} failed: {exc!r}")
            raise UpstreamError(host, str(exc), headers=cors_headers) from exc

        logger.debug(
            f"{request.method} {url} -> {upstream.status_code}",
            extra={"upstream": host, "status_code": upstream.status_code},
        )
        return UpstreamResponse(
            upstream,
            self.rule,
            extra_headers=cors_headers,
            marker_header=self.marker_header,
            marker_value=self.marker_value,
        )
