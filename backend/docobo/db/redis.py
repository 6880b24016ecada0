"""Redis client for webhook rate limiting"""
import redis
import logging
from docobo.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment the fixed-window counter for an identifier and return the new count"""
    key = f"ratelimit:{identifier}"
    client = get_redis_client()
    count = client.incr(key)
    if count == 1:
        # First hit opens the window
        client.expire(key, window)
    return int(count)


def check_rate_limit(identifier: str) -> bool:
    """Check if request is within rate limit using Redis. Returns True if allowed, False if rate limited.

    Redis outages fail open.
    """
    try:
        current_count = increment_rate_limit(identifier, settings.RATE_LIMIT_WINDOW)
    except redis.RedisError as e:
        logger.warning(f"Rate limiter unavailable, allowing request: {e}")
        return True

    return current_count <= settings.RATE_LIMIT_REQUESTS
