"""
Redis connection helpers for the event sink.
"""

from typing import Optional

import redis.asyncio as redis

from ladder.config import Config
from ladder.utils.logger import setup_logger

logger = setup_logger(__name__)

LOCAL_REDIS_URL = 'redis://localhost:6379'


class RedisUtils:
    """Resolves the event broker URL and opens a checked client."""

    @staticmethod
    def get_event_redis_url() -> Optional[str]:
        """REDIS_URL when configured; the local broker only in debug mode."""
        if Config.REDIS_URL:
            return Config.REDIS_URL
        if Config.DEBUG:
            logger.warning(f"REDIS_URL not set; using {LOCAL_REDIS_URL} for ladder events")
            return LOCAL_REDIS_URL
        logger.error("REDIS_URL is required to publish ladder events through Redis")
        return None

    @staticmethod
    async def create_redis_client(redis_url: Optional[str] = None) -> Optional[redis.Redis]:
        """Connect and ping; returns None when the broker is unreachable."""
        redis_url = redis_url or RedisUtils.get_event_redis_url()
        if not redis_url:
            return None

        client = redis.from_url(redis_url)
        try:
            await client.ping()
        except (redis.RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await client.aclose()
            return None
        logger.info("Connected to Redis for ladder events")
        return client
