"""Fixed-window request quotas keyed by account, or by client IP for anonymous calls."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Tuple

from fastapi import Request
import redis.asyncio as redis

from config import settings
from services.errors import RateLimitError
from services.session_token import decode_session_token


_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def client_identifier(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return "unknown"


def quota_subject(request: Request) -> str:
    """Signed-in callers share one bucket across devices; everyone else is bucketed by IP."""
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            return f"account:{decode_session_token(token.strip()).account_id}"
        except ValueError:
            pass
    return f"ip:{client_identifier(request)}"


async def _hit_redis(key: str, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        count = await client.incr(key)
        if count == 1:
            await client.expire(key, window_seconds)
    finally:
        await client.aclose()
    return int(count)


async def _hit_local(key: str, window_seconds: int) -> int:
    now = time.time()
    async with _local_lock:
        count, window_ends = _local_counters.get(key, (0, now + window_seconds))
        if now >= window_ends:
            count, window_ends = 0, now + window_seconds
        _local_counters[key] = (count + 1, window_ends)
        return count + 1


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], None]:
    """FastAPI dependency allowing ``limit`` calls per ``window_seconds`` for each quota subject."""

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"lumiere:rate:{prefix}:{quota_subject(request)}"
        try:
            hits = await _hit_redis(key, window_seconds)
        except (redis.RedisError, OSError):
            hits = await _hit_local(key, window_seconds)

        if hits > limit:
            raise RateLimitError(
                f"Too many {prefix.replace('_', ' ')} requests. Try again later.",
                limit=limit,
                window_seconds=window_seconds,
            )

    return _dependency
