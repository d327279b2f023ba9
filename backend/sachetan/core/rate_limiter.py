"""
Sliding-window rate limiting.

`RateLimiter` is keyed by an arbitrary client id. The conversation engine
keys it by phone number (10 inbound messages per 60 seconds by default);
`AdminRateLimitMiddleware` keys it by bearer-token prefix or IP for the
admin API. State is in-memory and per-process, which is fine for a
best-effort guard.
"""
import threading
import time
import logging
from collections import defaultdict
from typing import Dict, List, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from sachetan.core.config import settings

logger = logging.getLogger(__name__)


class RateLimiter:
    """In-memory rate limiter with sliding window. Safe to share across threads."""

    def __init__(self, requests: int = 10, window: int = 60, clock=time.monotonic):
        """
        Args:
            requests: Maximum requests allowed in window
            window: Time window in seconds
            clock: Monotonic time source (overridable in tests)
        """
        self.requests = requests
        self.window = window
        self._clock = clock
        self._lock = threading.Lock()
        self.clients: Dict[str, List[float]] = defaultdict(list)
        self.last_cleanup = clock()

    def is_allowed(self, client_id: str) -> Tuple[bool, int]:
        """
        Record one hit for `client_id` if it is under the limit.

        Returns:
            (allowed, remaining)
        """
        with self._lock:
            now = self._clock()

            if now - self.last_cleanup > 300:
                self._cleanup(now)
                self.last_cleanup = now

            cutoff = now - self.window
            timestamps = [ts for ts in self.clients[client_id] if ts > cutoff]

            if len(timestamps) < self.requests:
                timestamps.append(now)
                self.clients[client_id] = timestamps
                return True, self.requests - len(timestamps)

            self.clients[client_id] = timestamps
            return False, 0

    def reset(self, client_id: str) -> None:
        with self._lock:
            self.clients.pop(client_id, None)

    def _cleanup(self, now: float):
        """Drop idle clients so the table does not grow without bound."""
        cutoff = now - self.window
        for client_id in list(self.clients.keys()):
            timestamps = [ts for ts in self.clients[client_id] if ts > cutoff]
            if timestamps:
                self.clients[client_id] = timestamps
            else:
                del self.clients[client_id]

        logger.info(f"Rate limiter cleanup: {len(self.clients)} active clients")


admin_rate_limiter = RateLimiter(
    requests=settings.ADMIN_RATE_LIMIT_REQUESTS,
    window=settings.RATE_LIMIT_WINDOW_SECONDS,
)


class AdminRateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limits the admin API only. Webhooks must always be acknowledged."""

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith("/api/admin"):
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        auth_header = request.headers.get("authorization", "")
        if auth_header.startswith("Bearer "):
            client_id = f"token:{auth_header[7:20]}"
        else:
            client_id = f"ip:{client_ip}"

        allowed, remaining = admin_rate_limiter.is_allowed(client_id)
        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {client_id} on {request.method} {request.url.path}"
            )
            return JSONResponse(
                status_code=429,
                content={"detail": f"Rate limit exceeded. Try again in {settings.RATE_LIMIT_WINDOW_SECONDS} seconds."},
                headers={
                    "Retry-After": str(settings.RATE_LIMIT_WINDOW_SECONDS),
                    "X-RateLimit-Limit": str(settings.ADMIN_RATE_LIMIT_REQUESTS),
                    "X-RateLimit-Remaining": "0",
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(settings.ADMIN_RATE_LIMIT_REQUESTS)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response
