"""Per-user request quotas backed by Redis, with an in-process fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Tuple

from fastapi import Depends, Request
import redis.asyncio as redis

from config import settings
from routers.auth_scope import AuthContext, get_auth_context
from services.errors import RateLimited

logger = logging.getLogger(__name__)

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


async def _consume_redis_quota(key: str, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        current = await client.incr(key)
        if current == 1:
            await client.expire(key, window_seconds)
    finally:
        await client.aclose()
    return int(current)


async def _consume_local_quota(key: str, window_seconds: int) -> int:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[..., Awaitable[None]]:
    """Return a FastAPI dependency limiting each Telegram user to `limit` calls per window."""

    async def _dependency(request: Request, auth: AuthContext = Depends(get_auth_context)) -> None:
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"mystic:rate:{prefix}:{auth.user_id}"
        try:
            current = await _consume_redis_quota(key, window_seconds)
        except Exception as exc:
            logger.debug("Redis quota unavailable for %s, using local counter: %s", prefix, exc)
            current = await _consume_local_quota(key, window_seconds)

        if current > limit:
            raise RateLimited(prefix, window_seconds)

    return _dependency
