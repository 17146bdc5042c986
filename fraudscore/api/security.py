"""
Security dependencies for the API: API key check and per-IP rate limiting.
"""

import time
from collections import defaultdict
from typing import Optional, Tuple

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from fraudscore.config import settings
from fraudscore.utils.logging_config import StructuredLogger, metrics

logger = StructuredLogger(__name__)

# API Key header scheme
api_key_header = APIKeyHeader(name=settings.api_token_header, auto_error=False)


async def verify_api_token(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
):
    """
    Verify the API token from the configured header.

    In development mode (no token configured), this is bypassed.
    In production, a valid token is required.
    """
    if not settings.api_token:
        if settings.is_production:
            logger.warning("API token not configured in production mode!")
        return None

    client = request.client.host if request.client else "unknown"
    if not api_key:
        logger.warning("Missing API key", client=client)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing API key. Provide {settings.api_token_header} header.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if api_key != settings.api_token:
        logger.warning("Invalid API key attempt", client=client)
        metrics.increment("api.auth.rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    return api_key


class RateLimiter:
    """
    Simple in-memory sliding-window rate limiter keyed by client.
    """

    def __init__(self):
        self._requests: dict = defaultdict(list)

    def _clean_old_requests(self, key: str, window: int):
        now = time.time()
        self._requests[key] = [ts for ts in self._requests[key] if now - ts < window]

    def is_allowed(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        """
        Returns:
            (allowed, remaining)
        """
        self._clean_old_requests(key, window)

        current_count = len(self._requests[key])
        if current_count >= limit:
            return False, 0

        self._requests[key].append(time.time())
        return True, limit - current_count - 1

    def get_retry_after(self, key: str, window: int) -> int:
        """Seconds until the oldest request leaves the window."""
        if not self._requests[key]:
            return 0
        oldest = min(self._requests[key])
        return max(0, int(window - (time.time() - oldest)))

    def reset(self):
        self._requests.clear()


# Global rate limiter instance
rate_limiter = RateLimiter()


async def check_rate_limit(request: Request):
    """Rate limiting dependency, per client IP."""
    if not settings.rate_limit_requests:
        return  # Rate limiting disabled

    client_ip = request.client.host if request.client else "unknown"

    allowed, remaining = rate_limiter.is_allowed(
        key=client_ip,
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
    )

    request.state.rate_limit_remaining = remaining
    request.state.rate_limit_limit = settings.rate_limit_requests

    if not allowed:
        retry_after = rate_limiter.get_retry_after(client_ip, settings.rate_limit_window)
        logger.warning("Rate limit exceeded", client=client_ip)
        metrics.increment("api.rate_limited")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(settings.rate_limit_requests),
                "X-RateLimit-Remaining": "0",
            },
        )
