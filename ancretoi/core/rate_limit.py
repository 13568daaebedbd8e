"""
Rate Limiting
=============

Redis-based fixed window rate limiting for API endpoints.
"""

import logging
from typing import Optional

from fastapi import Request, status

from ancretoi.core.errors import AppException, ErrorCodes
from ancretoi.services.cache import get_redis

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed window rate limiter using Redis.

    Rate limits are applied per bearer token (if present) or per IP.

    Default limits:
        - Authentication endpoints: 5 requests/minute
        - Newsletter subscription: 5 requests/minute
        - Creation endpoints: 30 requests/minute
        - Read endpoints: 100 requests/minute
    """

    # Limit configurations
    LIMITS = {
        "auth": {"max_requests": 5, "window_seconds": 60},
        "subscribe": {"max_requests": 5, "window_seconds": 60},
        "create": {"max_requests": 30, "window_seconds": 60},
        "read": {"max_requests": 100, "window_seconds": 60},
    }

    @staticmethod
    def _get_key(identifier: str, action: str) -> str:
        """Generate rate limit key."""
        return f"ratelimit:{action}:{identifier}"

    @staticmethod
    async def check_rate_limit(
        identifier: str,
        action: str,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ) -> dict:
        """
        Check if request is within rate limit.

        Args:
            identifier: Token prefix or IP address
            action: Action type (auth, subscribe, create, read)
            max_requests: Override max requests (optional)
            window_seconds: Override window size (optional)

        Returns:
            Dict with 'allowed', 'remaining', 'reset_in' keys
        """
        limits = RateLimiter.LIMITS.get(action, RateLimiter.LIMITS["read"])
        max_req = max_requests or limits["max_requests"]
        window = window_seconds or limits["window_seconds"]

        key = RateLimiter._get_key(identifier, action)

        try:
            client = await get_redis()

            current = await client.get(key)

            if current is None:
                # First request in window
                await client.setex(key, window, 1)
                return {
                    "allowed": True,
                    "remaining": max_req - 1,
                    "reset_in": window,
                }

            current_count = int(current)

            if current_count >= max_req:
                ttl = await client.ttl(key)
                return {
                    "allowed": False,
                    "remaining": 0,
                    "reset_in": ttl if ttl > 0 else window,
                }

            await client.incr(key)
            ttl = await client.ttl(key)

            return {
                "allowed": True,
                "remaining": max_req - current_count - 1,
                "reset_in": ttl if ttl > 0 else window,
            }

        except Exception as e:
            logger.warning("Rate limit check error: %s", e)
            # Fail open
            return {
                "allowed": True,
                "remaining": max_req,
                "reset_in": window,
            }


def _identifier(request: Request) -> str:
    identifier = request.client.host if request.client else "unknown"
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        identifier = auth_header[7:20]
    return identifier


async def rate_limit_dependency(
    request: Request,
    action: str = "read",
) -> None:
    """
    FastAPI dependency for rate limiting.

    Raises a 429 ``RATE_LIMIT`` error with the usual rate limit headers.
    """
    result = await RateLimiter.check_rate_limit(_identifier(request), action)

    if not result["allowed"]:
        limit = RateLimiter.LIMITS.get(action, RateLimiter.LIMITS["read"])["max_requests"]
        exc = AppException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            code=ErrorCodes.RATE_LIMIT_EXCEEDED,
            message=f"Trop de requêtes. Réessaie dans {result['reset_in']} secondes.",
        )
        exc.headers = {
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(result["remaining"]),
            "X-RateLimit-Reset": str(result["reset_in"]),
            "Retry-After": str(result["reset_in"]),
        }
        raise exc


def create_rate_limit_dependency(action: str = "read"):
    """
    Factory for rate limit dependencies.

    Usage:
        @router.post("/subscribe", dependencies=[Depends(create_rate_limit_dependency("subscribe"))])
        async def subscribe():
            ...
    """
    async def dependency(request: Request) -> None:
        await rate_limit_dependency(request, action)

    return dependency
