"""
CardSync Pro Backend — Rate Limiting Middleware
================================================

What:  Per-client sliding window rate limiter.
Why:   Extraction calls cost Gemini quota; the API should not be hammered.
How:   Each client address keeps a deque of request timestamps. Timestamps
       older than the window are dropped on every request; a client at the
       limit gets 429 with Retry-After.

Excluded paths:
    - /api/webhooks/stripe: Stripe retries on 429 and bursts after outages
    - /health, docs: must always be reachable

Production Upgrade Path:
    In-memory state is per worker process. For several workers behind one
    address, move the windows to Redis.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from cardsync.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class SlidingWindowLimiter:
    """
    Counts hits per key over the last `window` seconds.

    hit() returns None when allowed, or the seconds until the oldest hit
    leaves the window when the key is at its limit.
    """

    CLEANUP_EVERY = 1000

    def __init__(self, limit: int, window: int, clock=time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._calls = 0

    def hit(self, key: str) -> Optional[int]:
        now = self._clock()
        window_start = now - self.window
        hits = self._hits[key]
        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= self.limit:
            return int(hits[0] + self.window - now) + 1

        hits.append(now)
        self._calls += 1
        if self._calls % self.CLEANUP_EVERY == 0:
            self._cleanup(window_start)
        return None

    def _cleanup(self, window_start: float) -> None:
        """Drop keys whose hits have all left the window."""
        inactive = [key for key, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for key in inactive:
            del self._hits[key]
        if inactive:
            logger.debug("Cleaned up %d inactive rate-limit entries", len(inactive))


class RateLimitMiddleware(BaseHTTPMiddleware):

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc", "/api/webhooks/stripe"}

    def __init__(self, app, requests: int = 100, window: int = 3600, **kwargs):
        super().__init__(app, **kwargs)
        self.limiter = SlidingWindowLimiter(limit=requests, window=window)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        # Behind a proxy this is the proxy's address unless uvicorn runs
        # with --proxy-headers
        client_ip = request.client.host if request.client else "unknown"

        retry_after = self.limiter.hit(client_ip)
        if retry_after is not None:
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                client_ip,
                self.limiter.limit,
                self.limiter.window,
            )
            exc = RateLimitExceededError(retry_after=retry_after)
            # Raised errors do not reach the app's handlers from middleware,
            # so the error body is rendered here
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": exc.message,
                    "details": exc.context,
                    "request_id": None,
                },
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)
