"""
Redis cache helpers

Values are stored JSON-encoded. Key/value operations are fail-soft: a Redis
error is logged and reported as a cache miss, never raised, so a cache
outage only costs a database round-trip.

List and sorted-set helpers back the email queue and search popularity and
do raise redis.RedisError; their callers decide how to report it.
"""
import json
import logging
from typing import Any, List, Optional, Tuple

import redis
from redis.exceptions import RedisError

from .config import settings

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Lazily create the shared Redis client"""
    global _client
    if _client is None:
        _client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
    return _client


def _encode(value: Any) -> str:
    return json.dumps(value, default=str)


# ============================================================================
# Key / value (fail-soft)
# ============================================================================

def get_cache(key: str) -> Optional[Any]:
    if not settings.CACHE_ENABLED:
        return None
    try:
        raw = get_redis_client().get(key)
        return json.loads(raw) if raw is not None else None
    except (RedisError, ValueError) as e:
        logger.error(f"Cache get failed for {key}: {e}")
        return None


def set_cache(key: str, value: Any, ttl: int = 3600) -> bool:
    """Store value under key for ttl seconds"""
    if not settings.CACHE_ENABLED:
        return False
    try:
        get_redis_client().setex(key, ttl, _encode(value))
        return True
    except (RedisError, TypeError) as e:
        logger.error(f"Cache set failed for {key}: {e}")
        return False


def delete_cache(*keys: str) -> int:
    if not settings.CACHE_ENABLED or not keys:
        return 0
    try:
        return get_redis_client().delete(*keys)
    except RedisError as e:
        logger.error(f"Cache delete failed for {keys}: {e}")
        return 0


def delete_cache_pattern(pattern: str) -> int:
    """Delete every key matching a glob pattern, e.g. 'vendors:list*'"""
    if not settings.CACHE_ENABLED:
        return 0
    try:
        client = get_redis_client()
        keys = list(client.scan_iter(match=pattern, count=500))
        return client.delete(*keys) if keys else 0
    except RedisError as e:
        logger.error(f"Cache pattern delete failed for {pattern}: {e}")
        return 0


# ============================================================================
# Lists and sorted sets
# ============================================================================

def push_queue(key: str, value: Any) -> int:
    """Append to the tail of a list, returns the new length"""
    return get_redis_client().rpush(key, _encode(value))


def pop_queue(key: str) -> Optional[Any]:
    """
    Pop from the head of a list, None when empty

    An entry that is not valid JSON is returned as the raw string, so the
    caller can still inspect or park it.
    """
    raw = get_redis_client().lpop(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"Undecodable entry popped from {key}")
        return raw


def queue_length(key: str) -> int:
    return get_redis_client().llen(key)


def clear_queue(*keys: str) -> int:
    return get_redis_client().delete(*keys)


def increment_score(key: str, member: str, amount: float = 1) -> float:
    return get_redis_client().zincrby(key, amount, member)


def top_scores(key: str, limit: int = 10) -> List[Tuple[str, float]]:
    return get_redis_client().zrevrange(key, 0, limit - 1, withscores=True)


def push_recent(key: str, member: str, max_items: int = 20, ttl: int = 30 * 24 * 3600) -> None:
    """Keep a capped most-recent-first list without duplicates"""
    client = get_redis_client()
    pipe = client.pipeline()
    pipe.lrem(key, 0, member)
    pipe.lpush(key, member)
    pipe.ltrim(key, 0, max_items - 1)
    pipe.expire(key, ttl)
    pipe.execute()


def read_recent(key: str, limit: int = 20) -> List[str]:
    return get_redis_client().lrange(key, 0, limit - 1)
