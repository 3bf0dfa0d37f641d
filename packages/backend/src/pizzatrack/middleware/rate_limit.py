"""Rate limiting middleware — Redis fixed-window counter.

Each IP gets one counter per minute, keyed
"pizzatrack:rl:{ip}:{minute}". Only /api/ routes are limited; health
checks and the WebSocket upgrade are not.

Skips rate limiting entirely if Redis is unavailable (e.g., in tests).
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = structlog.get_logger()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100):
        super().__init__(app)
        self.default_rpm = default_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if not path.startswith("/api/") or path.endswith("/health"):
            return await call_next(request)

        try:
            from pizzatrack.cache import get_redis

            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        window = int(time.time() // 60)
        key = f"pizzatrack:rl:{client_ip}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)
        except Exception as e:
            # Redis error — don't block the request
            logger.warning("ratelimit.redis_error", error=str(e))
            return await call_next(request)

        if count > self.default_rpm:
            logger.info("ratelimit.exceeded", client_ip=client_ip, count=count)
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "TooManyRequests",
                    "message": "Rate limit exceeded. Try again later.",
                    "statusCode": 429,
                    "path": path,
                    "method": request.method,
                },
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.default_rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.default_rpm - count))
        return response
