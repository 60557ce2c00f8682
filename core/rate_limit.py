"""
Rate Limiting Middleware

Fixed-window counters in Redis, keyed per caller and endpoint. Counters live
in the shared store, not in process memory, so limits hold across every API
instance. Fails open when Redis is unavailable.
"""
import time
import logging
from typing import Optional, Dict, Tuple
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from core.config import settings
from core.cache import get_redis_client

logger = logging.getLogger(__name__)

EXEMPT_PATHS = {"/health", "/ping", "/docs", "/openapi.json", "/redoc"}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-caller, per-endpoint request limits."""

    def __init__(self, app, default_limit: int = 60, window: int = 60, endpoint_limits: Optional[Dict[str, int]] = None):
        super().__init__(app)
        self.default_limit = default_limit
        self.window = window  # Time window in seconds

        # Per-endpoint limits (requests per window); prefix match
        self.endpoint_limits = endpoint_limits if endpoint_limits is not None else {
            "/v1/attempt/start": settings.ATTEMPT_RATE_LIMIT_PER_MINUTE,
            "/v1/attempt/answer": settings.ATTEMPT_RATE_LIMIT_PER_MINUTE,
            "/v1/public": settings.ATTEMPT_RATE_LIMIT_PER_MINUTE,
            "/v1/quiz": settings.ATTEMPT_RATE_LIMIT_PER_MINUTE,
        }

    async def dispatch(self, request: Request, call_next):
        if not settings.RATE_LIMIT_ENABLED or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        caller = self._get_caller_id(request)
        limit = self._get_endpoint_limit(request.url.path)

        allowed, remaining, reset_time = self._check_rate_limit(
            caller=caller,
            endpoint=request.url.path,
            limit=limit,
        )

        if not allowed:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "detail": "Rate limit exceeded",
                    "error_code": "RATE_LIMITED",
                    "limit": limit,
                    "window": self.window,
                    "reset_at": reset_time
                },
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(reset_time),
                    "Retry-After": str(max(0, int(reset_time - time.time())))
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)
        return response

    def _get_caller_id(self, request: Request) -> str:
        """Coach id from a valid bearer token, else client IP (invite-token callers)."""
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            from core.security import decode_access_token
            payload = decode_access_token(auth_header.split(" ", 1)[1])
            if payload and payload.get("sub"):
                return f"user:{payload.get('sub')}"

        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _get_endpoint_limit(self, path: str) -> int:
        if path in self.endpoint_limits:
            return self.endpoint_limits[path]
        for endpoint, limit in self.endpoint_limits.items():
            if path.startswith(endpoint):
                return limit
        return self.default_limit

    def _check_rate_limit(self, caller: str, endpoint: str, limit: int) -> Tuple[bool, int, int]:
        """
        Returns:
            (allowed, remaining, reset_time)
        """
        redis_client = get_redis_client()
        now = int(time.time())

        if not redis_client:
            logger.warning("Redis unavailable, skipping rate limit check")
            return True, limit, now + self.window

        key = f"rate_limit:{caller}:{endpoint}"

        try:
            # INCR and EXPIRE NX in one round trip: the first hit of a window
            # sets the TTL, later hits leave it alone.
            pipe = redis_client.pipeline()
            pipe.incr(key)
            pipe.expire(key, self.window, nx=True)
            pipe.ttl(key)
            count, _, ttl = pipe.execute()

            reset_time = now + (ttl if ttl and ttl > 0 else self.window)
            if count > limit:
                return False, 0, reset_time
            return True, max(0, limit - count), reset_time

        except Exception as e:
            logger.error(f"Rate limit check error: {e}")
            return True, limit, now + self.window
