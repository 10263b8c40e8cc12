# storefront/services/cache_service.py
import redis
from redis.exceptions import RedisError

from storefront.utils.retry import redis_retry
from storefront.utils.settings import REDIS_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class RedisCache:
    """
    Ephemeral key/value store used for guest cart snapshots.
    Entries expire on their own (EX), nothing has to clean them up.
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @redis_retry()
    def get(self, key: str) -> str | None:
        return self.redis.get(key)

    @redis_retry()
    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        #SET cart:session:abc '{"lines": []}' EX 86400
        self.redis.set(name=key, value=value, ex=ttl_seconds)

    @redis_retry()
    def delete(self, key: str) -> None:
        self.redis.delete(key)

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False
