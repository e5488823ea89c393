import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from fastapi import Request

logger = logging.getLogger(__name__)

class SummaryCache:
    """
    Thin wrapper over an async redis client.

    The cache only ever holds derived values. Any redis failure is logged and
    reported as a miss, callers fall back to the store.
    """

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "SummaryCache":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get_json(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except Exception as e:
            logger.warning(f"Cache GET failed for key {key}: {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding undecodable cache entry {key}")
            return None

    async def set_json(self, key: str, value: Any, ttl: int) -> bool:
        try:
            await self.client.set(key, json.dumps(value, default=str), ex=max(1, int(ttl)))
            return True
        except Exception as e:
            logger.warning(f"Cache SET failed for key {key}: {e}")
            return False

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Cache ping failed: {e}")
            return False

    async def close(self):
        try:
            await self.client.aclose()
        except Exception as e:
            logger.warning(f"Closing cache client failed: {e}")

def get_summary_cache(request: Request) -> SummaryCache:
    return request.app.state.cache
