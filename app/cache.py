import json
from typing import Any, Callable, Optional
import redis
from app.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)


def create_redis_client() -> Optional[redis.Redis]:
    """
    Connect to the cache Redis from settings.

    Returns None when Redis cannot be reached; the cache then passes every read
    through to the loader.
    """
    try:
        client = redis.Redis(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            decode_responses=True,
            retry_on_timeout=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        client.ping()
        logger.info(f"Cache Redis connected: {settings.REDIS_HOST}:{settings.REDIS_PORT}")
        return client
    except redis.RedisError as e:
        logger.warning(f"Cache Redis connection failed: {e}. Cache will be disabled.")
        return None


def user_cache_key(user_id: str) -> str:
    return f"user:{user_id}"


class UserCache:
    """
    Read-through cache of user records keyed by user id.

    Entries live for ``ttl_seconds`` and are dropped on profile changes. Reads
    may be stale for up to the TTL. Redis failures are logged and treated as
    misses.
    """

    def __init__(self, client: Optional[redis.Redis], ttl_seconds: int = settings.USER_CACHE_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls) -> "UserCache":
        return cls(create_redis_client())

    def is_available(self) -> bool:
        return self.client is not None

    def get(self, user_id: str) -> Optional[dict]:
        if not self.is_available():
            return None
        try:
            data = self.client.get(user_cache_key(user_id))
            if data:
                return json.loads(data)
        except (redis.RedisError, ValueError) as e:
            logger.error(f"Error getting cached user {user_id}: {e}")
        return None

    def set(self, user_id: str, value: dict) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.setex(user_cache_key(user_id), self.ttl_seconds, json.dumps(value, default=str))
            return True
        except (redis.RedisError, TypeError) as e:
            logger.error(f"Error caching user {user_id}: {e}")
            return False

    def invalidate(self, user_id: str) -> bool:
        if not self.is_available():
            return False
        try:
            self.client.delete(user_cache_key(user_id))
            return True
        except redis.RedisError as e:
            logger.error(f"Error invalidating cached user {user_id}: {e}")
            return False

    def get_or_load(self, user_id: str, loader: Callable[[], Optional[Any]]) -> Optional[dict]:
        """Return the cached record, or call ``loader`` and cache what it returns."""
        cached = self.get(user_id)
        if cached is not None:
            return cached
        value = loader()
        if value is None:
            return None
        if hasattr(value, 'model_dump'):
            value = value.model_dump(mode="json")
        self.set(user_id, value)
        return value

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
