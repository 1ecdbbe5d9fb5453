import logging
import redis.asyncio as redis
from .config import settings
from typing import Optional

logger = logging.getLogger(__name__)

class RedisClient:
    """Resolution cache. Every call is a no-op when REDIS_URL is unset."""

    def __init__(self):
        self.client: Optional[redis.Redis] = None

    async def connect(self, url: Optional[str] = None):
        url = url or settings.REDIS_URL
        if not url:
            logger.info("REDIS_URL not set, resolution cache disabled")
            return
        self.client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True
        )
        await self.client.ping()

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def get(self, key: str) -> Optional[str]:
        if not self.client:
            return None
        try:
            return await self.client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Redis get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: str, ex: int = None):
        if not self.client:
            return
        try:
            await self.client.set(key, value, ex=ex)
        except redis.RedisError as e:
            logger.warning(f"Redis set failed for {key}: {e}")

redis_client = RedisClient()
