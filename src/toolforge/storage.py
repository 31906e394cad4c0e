"""Redis-backed TTL cache for ranked candidate lists and query expansions."""

from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .config import Settings

logger = logging.getLogger(__name__)


class RedisCache:
    """JSON values over Redis with per-entry TTL.

    Every failure of the underlying store is logged and reported as a miss (or
    a dropped write) so callers simply recompute.
    """

    def __init__(self, redis: Redis, settings: Settings) -> None:
        self.redis = redis
        self.settings = settings

    # ---- Key helpers -----------------------------------------------------
    @staticmethod
    def rank_key(digest: str) -> str:
        return f"tf:rank:{digest}"

    @staticmethod
    def expansion_key(digest: str) -> str:
        return f"tf:qx:{digest}"

    # ---- Access ----------------------------------------------------------
    async def get_json(self, key: str) -> Any | None:
        try:
            raw = await self.redis.get(key)
        except (RedisError, OSError) as exc:
            logger.warning("cache read failed for %s: %s", key, exc)
            return None
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("discarding undecodable cache entry %s", key)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        data = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
        try:
            if ttl_seconds > 0:
                await self.redis.setex(key, ttl_seconds, data)
            else:
                await self.redis.set(key, data)
        except (RedisError, OSError) as exc:
            logger.warning("cache write failed for %s: %s", key, exc)

    async def close(self) -> None:
        await self.redis.aclose()


__all__ = ["RedisCache"]
