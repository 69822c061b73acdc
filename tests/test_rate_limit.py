"""Tests for the fixed-window rate limiter and its middleware."""

import asyncio

import httpx
import pytest

from relay.app.middleware.rate_limit import (
    ClientWindowState,
    FixedWindowRateLimiter,
    get_client_id,
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestFixedWindowRateLimiter:
    """Tests for the in-memory fixed window limiter."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def limiter(self, clock):
        return FixedWindowRateLimiter(limit=10, window_seconds=60, clock=clock)

    @pytest.mark.asyncio
    async def test_allows_requests_under_limit(self, limiter):
        for _ in range(10):
            assert await limiter.is_allowed("10.0.0.1") is True

    @pytest.mark.asyncio
    async def test_blocks_request_over_limit(self, limiter):
        results = [await limiter.is_allowed("10.0.0.1") for _ in range(11)]

        assert results == [True] * 10 + [False]

    @pytest.mark.asyncio
    async def test_first_request_opens_window(self, limiter, clock):
        await limiter.is_allowed("10.0.0.1")

        state = limiter.get_state("10.0.0.1")
        assert state == ClientWindowState(window_started_at=clock.now, request_count=1)

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self, limiter, clock):
        for _ in range(11):
            await limiter.is_allowed("10.0.0.1")
        assert await limiter.is_allowed("10.0.0.1") is False

        clock.advance(61)

        assert await limiter.is_allowed("10.0.0.1") is True
        state = limiter.get_state("10.0.0.1")
        assert state.window_started_at == clock.now
        assert state.request_count == 1

    @pytest.mark.asyncio
    async def test_fresh_window_has_full_budget(self, limiter, clock):
        for _ in range(12):
            await limiter.is_allowed("10.0.0.1")

        clock.advance(60.5)

        results = [await limiter.is_allowed("10.0.0.1") for _ in range(11)]
        assert results == [True] * 10 + [False]

    @pytest.mark.asyncio
    async def test_request_on_boundary_belongs_to_current_window(self, limiter, clock):
        for _ in range(10):
            await limiter.is_allowed("10.0.0.1")

        clock.advance(60)

        assert await limiter.is_allowed("10.0.0.1") is False

        clock.advance(0.001)

        assert await limiter.is_allowed("10.0.0.1") is True

    @pytest.mark.asyncio
    async def test_window_does_not_slide_with_traffic(self, limiter, clock):
        await limiter.is_allowed("10.0.0.1")
        clock.advance(59)
        for _ in range(9):
            await limiter.is_allowed("10.0.0.1")
        assert await limiter.is_allowed("10.0.0.1") is False

        clock.advance(2)

        assert await limiter.is_allowed("10.0.0.1") is True

    @pytest.mark.asyncio
    async def test_different_clients_independent(self, limiter):
        for _ in range(10):
            await limiter.is_allowed("10.0.0.1")
        assert await limiter.is_allowed("10.0.0.1") is False

        assert await limiter.is_allowed("10.0.0.2") is True

    @pytest.mark.asyncio
    async def test_concurrent_checks_never_exceed_limit(self, limiter):
        results = await asyncio.gather(
            *(limiter.is_allowed("10.0.0.1") for _ in range(25))
        )

        assert results.count(True) == 10
        assert limiter.get_state("10.0.0.1").request_count == 10

    @pytest.mark.asyncio
    async def test_cleanup_removes_only_expired_clients(self, limiter, clock):
        await limiter.is_allowed("old")
        clock.advance(45)
        await limiter.is_allowed("recent")
        clock.advance(20)

        removed = await limiter.cleanup()

        assert removed == 1
        assert limiter.get_state("old") is None
        assert limiter.get_state("recent") is not None
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_cleanup_loop_sweeps_periodically(self, clock):
        limiter = FixedWindowRateLimiter(limit=1, window_seconds=1, clock=clock)
        await limiter.is_allowed("10.0.0.1")
        clock.advance(5)

        task = asyncio.create_task(limiter.run_cleanup_loop(0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(limiter) == 0

    @pytest.mark.parametrize(
        ("limit", "window"),
        [(0, 60), (-1, 60), (10, 0), (10, -5)],
    )
    def test_rejects_invalid_configuration(self, limit, window):
        with pytest.raises(ValueError):
            FixedWindowRateLimiter(limit=limit, window_seconds=window)


class TestGetClientId:
    """Tests for the rate limit key."""

    def test_uses_client_host_without_port(self):
        scope = {"type": "http", "client": ("192.168.1.1", 54321), "headers": []}

        assert get_client_id(scope) == "192.168.1.1"

    def test_missing_client_falls_back_to_unknown(self):
        scope = {"type": "http", "client": None, "headers": []}

        assert get_client_id(scope) == "unknown"

    def test_ignores_forwarded_for_by_default(self):
        scope = {
            "type": "http",
            "client": ("127.0.0.1", 1),
            "headers": [(b"x-forwarded-for", b"10.0.0.1, 192.168.1.1")],
        }

        assert get_client_id(scope) == "127.0.0.1"

    def test_trusted_forwarded_for_uses_first_entry(self):
        scope = {
            "type": "http",
            "client": ("127.0.0.1", 1),
            "headers": [(b"x-forwarded-for", b"10.0.0.1, 192.168.1.1")],
        }

        assert get_client_id(scope, trust_forwarded_for=True) == "10.0.0.1"


class TestRateLimitMiddleware:
    """Tests for the middleware inside the assembled application."""

    def test_eleventh_request_in_window_gets_429(self, make_client, upstream):
        route = upstream.get("http://upstream.test/").mock(
            return_value=httpx.Response(200, text="ok")
        )
        client = make_client(rate_limit_requests=10, rate_limit_window_seconds=60)

        responses = [client.get("/", params={"target": "upstream.test"}) for _ in range(11)]

        assert [r.status_code for r in responses[:10]] == [200] * 10
        assert responses[10].status_code == 429
        assert responses[10].text == "Rate Limit Exceeded"
        assert responses[10].headers["content-type"].startswith("text/plain")
        assert route.call_count == 10

    def test_rejected_request_skips_resolution(self, make_client, upstream):
        client = make_client(rate_limit_requests=1)

        assert client.get("/").status_code == 400
        resp = client.get("/")

        # Limiter answers before the missing target is noticed
        assert resp.status_code == 429

    def test_trusted_forwarded_for_separates_clients(self, make_client, upstream):
        upstream.get("http://upstream.test/").mock(return_value=httpx.Response(204))
        client = make_client(rate_limit_requests=1, rate_limit_trust_forwarded_for=True)
        params = {"target": "upstream.test"}

        assert client.get("/", params=params, headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 204
        assert client.get("/", params=params, headers={"X-Forwarded-For": "10.0.0.1"}).status_code == 429
        assert client.get("/", params=params, headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 204

    def test_limiter_is_shared_through_app_state(self, make_client, upstream):
        upstream.get("http://upstream.test/").mock(return_value=httpx.Response(200))
        client = make_client(rate_limit_requests=5)

        client.get("/", params={"target": "upstream.test"})

        limiter = client.app.state.rate_limiter
        assert limiter.get_state("testclient").request_count == 1
