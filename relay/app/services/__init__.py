"""Services package for the relay.

This package provides:
- Upstream resolution (query parameter or header)
- Response writers and body rewrite rules
- Forwarding to the resolved upstream
"""

from relay.app.services.forwarder import ProxyForwarder, UpstreamResponse
from relay.app.services.resolver import (
    HeaderResolver,
    QueryParamResolver,
    UpstreamResolver,
    build_resolver,
)
from relay.app.services.rewriter import (
    RewriteRule,
    RewritingWriter,
    ScriptInjectionRule,
    TextSubstitutionRule,
    build_rewrite_rule,
)
from relay.app.services.writer import ASGIResponseWriter, ResponseWriter

__all__ = [
    # Forwarding
    "ProxyForwarder",
    "UpstreamResponse",
    # Resolution
    "UpstreamResolver",
    "QueryParamResolver",
    "HeaderResolver",
    "build_resolver",
    # Rewriting
    "RewriteRule",
    "TextSubstitutionRule",
    "ScriptInjectionRule",
    "RewritingWriter",
    "build_rewrite_rule",
    # Writers
    "ResponseWriter",
    "ASGIResponseWriter",
]
