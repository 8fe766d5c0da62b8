"""
Redis access layer

Shared client plus the small set of key operations the service needs.
Includes graceful degradation if Redis is unavailable: callers get None/False
and fall back to process-local state.
"""
import logging
from typing import Optional
import redis
from redis.exceptions import ConnectionError, TimeoutError, RedisError
from core.config import settings

logger = logging.getLogger(__name__)

# Redis connection pool (singleton)
_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """Get Redis client with connection pooling. Returns None if Redis unavailable."""
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    try:
        _redis_client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
            retry_on_timeout=True,
            health_check_interval=30
        )
        _redis_client.ping()
        logger.info("Redis connection established")
        return _redis_client
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis unavailable: {e}. Using in-process state.")
        _redis_client = None
        return None


def reset_redis_client() -> None:
    """Drop the cached client so the next call reconnects (used by tests)."""
    global _redis_client
    _redis_client = None


def cache_key(prefix: str, *args) -> str:
    """Generate key from prefix and arguments, skipping None."""
    key_parts = [prefix]
    for arg in args:
        if arg is not None:
            key_parts.append(str(arg))
    return ":".join(key_parts)


def claim_key(key: str, ttl: int) -> Optional[bool]:
    """
    Atomically create `key` if it does not exist (SET NX EX).

    Returns:
        True if this caller created the key, False if it already existed,
        None if Redis is unavailable or errored.
    """
    client = get_redis_client()
    if not client:
        return None

    try:
        return bool(client.set(key, "1", nx=True, ex=ttl))
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis claim error for key {key}: {e}")
        return None


def delete_key(key: str) -> bool:
    """Delete key. Returns True if successful, False otherwise."""
    client = get_redis_client()
    if not client:
        return False

    try:
        client.delete(key)
        return True
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.warning(f"Redis delete error for key {key}: {e}")
        return False
