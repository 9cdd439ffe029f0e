"""Rate limiting configuration for the ingestion API."""

import logging
import os

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address

from salesops.core.config import settings
from salesops.core.redis_client import get_redis_url

logger = logging.getLogger(__name__)

# Redis storage for multi-worker support; in-memory for tests or when Redis is down
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)
ATTRIBUTION_LIMIT = (
    f"{settings.RATE_LIMIT_ATTRIBUTION}/minute"
    if settings.RATE_LIMIT_ATTRIBUTION > 0 and not IS_TESTING
    else "1000000/minute"
)


def _storage_uri() -> str:
    url = get_redis_url()
    if IS_TESTING or not url:
        return "memory://"
    try:
        redis.from_url(url, socket_connect_timeout=1).ping()
    except redis.RedisError as e:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", e)
        return "memory://"
    return url


limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_storage_uri(),
    default_limits=DEFAULT_LIMITS,
)
