"""Shared fixtures for relay tests."""

import logging

import pytest
import respx
from fastapi.testclient import TestClient

from relay.app.core.config import Settings
from relay.app.main import create_app

UPSTREAM_HOST = "upstream.test"
UPSTREAM = f"http://{UPSTREAM_HOST}"


def make_settings(**overrides) -> Settings:
    """Settings isolated from the developer's .env file."""
    return Settings(_env_file=None, **overrides)


@pytest.fixture
def upstream():
    """Stub upstream server; unmatched requests fail the test."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def make_client():
    """Build a TestClient (with lifespan running) for the given settings."""
    clients: list[TestClient] = []

    def _make(**overrides) -> TestClient:
        client = TestClient(create_app(make_settings(**overrides)))
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def rate_limited_client(make_client) -> TestClient:
    return make_client(rate_limit_requests=1)


@pytest.fixture
def relay_logs(monkeypatch):
    """Let caplog see records from the (non-propagating) relay logger tree.

    Must be requested after the app was created, since create_app
    reconfigures logging.
    """
    monkeypatch.setattr(logging.getLogger("relay"), "propagate", True)
