"""Upstream host resolution.

Each deployment reads the upstream host from exactly one place: a query
parameter or a request header. The strategy is picked from settings by
``build_resolver``.
"""

from abc import ABC, abstractmethod
from typing import Optional

from starlette.requests import Request

from relay.app.core.config import Settings


class UpstreamResolver(ABC):
    """Base class for upstream resolution strategies."""

    #: Reason sent with the 400 response when resolution fails
    missing_message: str = "Target is required"

    @abstractmethod
    def _extract(self, request: Request) -> Optional[str]:
        """Read the raw upstream value from the request."""

    def resolve(self, request: Request) -> Optional[str]:
        """Return the upstream host, or None when it is absent or empty.

        Any non-empty string is accepted as a host, including one that
        carries a port.
        """
        host = self._extract(request)
        if host is None:
            return None
        host = host.strip()
        return host or None


class QueryParamResolver(UpstreamResolver):
    """Reads the upstream host from a query parameter (``?target=host``)."""

    def __init__(self, param: str = "target"):
        self.param = param
        self.missing_message = f"{param.capitalize()} query parameter is required"

    def _extract(self, request: Request) -> Optional[str]:
        return request.query_params.get(self.param)


class HeaderResolver(UpstreamResolver):
    """Reads the upstream host from a request header (``Target-URL: host``)."""

    def __init__(self, header: str = "Target-URL"):
        self.header = header
        self.missing_message = f"{header} header is required"

    def _extract(self, request: Request) -> Optional[str]:
        return request.headers.get(self.header)


def build_resolver(config: Settings) -> UpstreamResolver:
    """Create the resolver selected by ``config.target_source``."""
    if config.target_source == "header":
        return HeaderResolver(config.target_header)
    if config.target_source == "query":
        return QueryParamResolver(config.target_query_param)
    raise ValueError(f"Unknown target source: {config.target_source!r}")
