"""Per-request proxy context shared between the pipeline layers."""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from starlette.requests import Request
from starlette.types import Scope

CONTEXT_STATE_KEY = "proxy_context"


@dataclass
class ProxyRequestContext:
    """What the logging middleware reports about one request.

    Created when the request enters the pipeline; the route fills in
    ``upstream_host`` once resolved and the logging middleware records
    the status of the response that was actually sent.
    """
    method: str
    url: str
    headers: Dict[str, str]
    client_id: Optional[str] = None
    upstream_host: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)
    status_code: Optional[int] = None

    @property
    def duration_ms(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000

    @classmethod
    def from_scope(cls, scope: Scope) -> "ProxyRequestContext":
        request = Request(scope)
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"
        return cls(
            method=request.method,
            url=url,
            headers=dict(request.headers),
            client_id=request.client.host if request.client else None,
        )


def attach_proxy_context(scope: Scope, context: ProxyRequestContext) -> None:
    scope.setdefault("state", {})[CONTEXT_STATE_KEY] = context


def get_proxy_context(request: Request) -> Optional[ProxyRequestContext]:
    """Get the proxy context from request state, if the middleware set one."""
    return getattr(request.state, CONTEXT_STATE_KEY, None)
