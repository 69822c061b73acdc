"""Catch-all proxy endpoint."""

from fastapi import APIRouter, Depends, Request, Response

from relay.app.core.context import get_proxy_context
from relay.app.exceptions import MissingTargetError
from relay.app.services.forwarder import ProxyForwarder
from relay.app.services.resolver import UpstreamResolver

router = APIRouter()

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def get_resolver(request: Request) -> UpstreamResolver:
    return request.app.state.resolver


def get_forwarder(request: Request) -> ProxyForwarder:
    return request.app.state.forwarder


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy(
    request: Request,
    resolver: UpstreamResolver = Depends(get_resolver),
    forwarder: ProxyForwarder = Depends(get_forwarder),
) -> Response:
    """Forward any request to the upstream it names."""
    host = resolver.resolve(request)
    if host is None:
        raise MissingTargetError(resolver.missing_message)

    context = get_proxy_context(request)
    if context is not None:
        context.upstream_host = host

    return await forwarder.forward(request, host)
