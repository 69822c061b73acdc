"""Rate limiting middleware for the relay.

Per-client fixed-window counter: each client may issue ``limit`` requests
per window; the window restarts on the first request that arrives after
it has expired. State lives in process memory only.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from starlette.datastructures import Headers
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from relay.app.core.context import CONTEXT_STATE_KEY
from relay.app.core.logging import get_logger
from relay.app.exceptions import RateLimitExceededError

logger = get_logger(__name__)

__all__ = [
    "ClientWindowState",
    "FixedWindowRateLimiter",
    "RateLimitMiddleware",
    "get_client_id",
]


@dataclass
class ClientWindowState:
    """Counting window of a single client."""
    window_started_at: float
    request_count: int = 0


class FixedWindowRateLimiter:
    """In-memory fixed-window rate limiter.

    All reads and writes of the client map happen under one lock, so
    decisions are serialized across every client. The critical section
    never awaits anything else.
    """

    def __init__(
        self,
        limit: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            limit: Maximum requests per client within one window
            window_seconds: Window length in seconds
            clock: Monotonic time source, injectable for tests
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._clients: Dict[str, ClientWindowState] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._clients)

    def get_state(self, client_id: str) -> Optional[ClientWindowState]:
        return self._clients.get(client_id)

    def _expired(self, state: ClientWindowState, now: float) -> bool:
        # A request exactly on the boundary still belongs to the old window
        return now - state.window_started_at > self.window_seconds

    async def is_allowed(self, client_id: str) -> bool:
        """Check-and-count one request for ``client_id``."""
        async with self._lock:
            now = self._clock()
            state = self._clients.get(client_id)

            if state is None or self._expired(state, now):
                self._clients[client_id] = ClientWindowState(
                    window_started_at=now, request_count=1
                )
                return True

            if state.request_count < self.limit:
                state.request_count += 1
                return True

            return False

    async def cleanup(self) -> int:
        """Drop clients whose window has expired.

        Returns:
            Number of entries removed
        """
        async with self._lock:
            now = self._clock()
            stale = [
                client_id
                for client_id, state in self._clients.items()
                if self._expired(state, now)
            ]
            for client_id in stale:
                del self._clients[client_id]

        if stale:
            logger.debug(f"Rate limiter evicted {len(stale)} stale clients")
        return len(stale)

    async def run_cleanup_loop(self, interval_seconds: float) -> None:
        """Call cleanup() every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            await self.cleanup()


def get_client_id(scope: Scope, trust_forwarded_for: bool = False) -> str:
    """Get the rate limit key for a request: the client IP without port.

    Args:
        scope: ASGI connection scope
        trust_forwarded_for: Use the first X-Forwarded-For entry when present

    Returns:
        Client identifier string
    """
    if trust_forwarded_for:
        forwarded = Headers(scope=scope).get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first

    client = scope.get("client")
    return client[0] if client else "unknown"


class RateLimitMiddleware:
    """ASGI middleware that rejects clients over their per-window budget.

    Rejected requests get a 429 plain-text response and never reach the
    inner application.

    Usage:
        app.add_middleware(RateLimitMiddleware, limiter=FixedWindowRateLimiter(10, 60))
    """

    def __init__(
        self,
        app: ASGIApp,
        limiter: FixedWindowRateLimiter,
        trust_forwarded_for: bool = False,
    ):
        self.app = app
        self.limiter = limiter
        self.trust_forwarded_for = trust_forwarded_for

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        client_id = get_client_id(scope, self.trust_forwarded_for)

        context = scope.get("state", {}).get(CONTEXT_STATE_KEY)
        if context is not None:
            context.client_id = client_id

        if await self.limiter.is_allowed(client_id):
            await self.app(scope, receive, send)
            return

        error = RateLimitExceededError(client_id)
        logger.warning(f"Rate limit exceeded for client {client_id}")
        response = PlainTextResponse(error.message, status_code=error.status_code)
        await response(scope, receive, send)
