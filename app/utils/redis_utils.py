import json
from typing import Optional

from redis.exceptions import RedisError

from app.config.config import redis
from app.config.logging import logger


async def cache_json(key: str, data: dict, expire: int = 86400) -> bool:
    """Cache a JSON document in Redis with expiration. False when Redis is down."""
    try:
        await redis.set(key, json.dumps(data), ex=expire)
    except RedisError as e:
        logger.warning("redis_cache_write_failed", key=key, error=str(e))
        return False
    return True


async def get_cached_json(key: str) -> Optional[dict]:
    """Cached JSON document, or None on a miss or when Redis is unavailable."""
    try:
        json_data = await redis.get(key)
    except RedisError as e:
        logger.warning("redis_cache_read_failed", key=key, error=str(e))
        return None
    if not json_data:
        return None
    try:
        return json.loads(json_data)
    except ValueError:
        logger.warning("redis_cache_corrupt", key=key)
        return None
