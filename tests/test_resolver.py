"""Tests for upstream resolution strategies."""

import pytest
from starlette.requests import Request

from relay.app.core.config import Settings
from relay.app.services.resolver import (
    HeaderResolver,
    QueryParamResolver,
    build_resolver,
)


def make_request(query: str = "", headers: dict | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "query_string": query.encode(),
        "headers": [
            (k.lower().encode("latin-1"), v.encode("latin-1"))
            for k, v in (headers or {}).items()
        ],
    }
    return Request(scope)


class TestQueryParamResolver:
    def test_reads_target_parameter(self):
        resolver = QueryParamResolver("target")

        assert resolver.resolve(make_request("target=example.com")) == "example.com"

    def test_host_with_port_is_accepted(self):
        resolver = QueryParamResolver("target")

        assert resolver.resolve(make_request("target=localhost:8080&x=1")) == "localhost:8080"

    @pytest.mark.parametrize("query", ["", "other=1", "target=", "target=%20%20"])
    def test_absent_or_empty_fails(self, query):
        assert QueryParamResolver("target").resolve(make_request(query)) is None

    def test_header_is_ignored(self):
        request = make_request(headers={"Target-URL": "example.com"})

        assert QueryParamResolver("target").resolve(request) is None

    def test_missing_message(self):
        assert QueryParamResolver("target").missing_message == "Target query parameter is required"


class TestHeaderResolver:
    def test_reads_header_case_insensitively(self):
        request = make_request(headers={"target-url": "example.com"})

        assert HeaderResolver("Target-URL").resolve(request) == "example.com"

    @pytest.mark.parametrize("headers", [{}, {"Target-URL": ""}, {"Target-URL": "   "}])
    def test_absent_or_empty_fails(self, headers):
        assert HeaderResolver("Target-URL").resolve(make_request(headers=headers)) is None

    def test_query_parameter_is_ignored(self):
        assert HeaderResolver("Target-URL").resolve(make_request("target=example.com")) is None

    def test_missing_message(self):
        assert HeaderResolver("Target-URL").missing_message == "Target-URL header is required"


class TestBuildResolver:
    def test_query_is_default(self):
        resolver = build_resolver(Settings(_env_file=None))

        assert isinstance(resolver, QueryParamResolver)
        assert resolver.param == "target"

    def test_header_variant(self):
        resolver = build_resolver(
            Settings(_env_file=None, target_source="header", target_header="X-Upstream")
        )

        assert isinstance(resolver, HeaderResolver)
        assert resolver.header == "X-Upstream"
