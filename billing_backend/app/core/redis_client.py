"""
Redis client initialization.

This module provides the Redis client used to cache member handle lookups.
Callers read ``redis_client`` from this module at call time so it can be
swapped (e.g. in tests).
"""

import redis.asyncio as redis
from billing_backend.app.core.config import settings


# Create async Redis client
redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)
