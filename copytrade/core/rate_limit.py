"""Redis-backed lightweight rate-limiting helpers."""

from __future__ import annotations

import logging
import time
from typing import Optional

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from redis.exceptions import RedisError

from copytrade.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_client: Optional[aioredis.Redis] = None


def _get_client() -> aioredis.Redis:
    # one pooled client per process
    global _client
    if _client is None:
        _client = aioredis.from_url(settings.REDIS_URL, decode_responses=True, socket_timeout=1)
    return _client


async def enforce_rate_limit(key: str, limit: int, window_seconds: int) -> None:
    """Raise 429 when key exceeds limit inside time window."""
    if limit <= 0:
        return

    now = int(time.time())
    window_key = f"rl:{key}:{now // window_seconds}"

    try:
        client = _get_client()
        count = await client.incr(window_key)
        if count == 1:
            await client.expire(window_key, window_seconds)
    except RedisError as exc:
        # fail-open in local/dev if redis is unavailable
        logger.warning("Rate limiter unavailable for %s: %s", key, exc)
        return

    if count > limit:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")
