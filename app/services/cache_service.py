"""Redis cache for derived category lookups"""
import json
import redis
from typing import Optional, List
from uuid import UUID
from datetime import timedelta
from app.core.config import settings
from app.core.logging import get_logger
from app.schemas.category import CategoryEvent

logger = get_logger(__name__)

KEY_PREFIX = "category:descendant-ids"
GENERATION_KEY = "category:cache-generation"


class CategoryCacheService:
    """
    Cache of category-and-descendant id lists.

    The cache is a derived artifact: every committed tree event drops all
    entries, the nested-set table stays the source of truth. Any Redis
    failure degrades to a cache miss.
    """

    def __init__(self, redis_url: Optional[str] = None, ttl_minutes: Optional[int] = None, client=None):
        """
        Initialize the cache service.

        Args:
            redis_url: Redis URL (defaults to settings.cache_redis_url)
            ttl_minutes: Entry TTL in minutes (default: settings.CATEGORY_CACHE_TTL_MINUTES)
            client: Pre-built Redis client (tests)
        """
        self.ttl = timedelta(minutes=ttl_minutes or settings.CATEGORY_CACHE_TTL_MINUTES)
        self.redis_url = redis_url or settings.cache_redis_url

        if client is not None:
            self.redis_client = client
            return

        try:
            conn_params = {
                "decode_responses": True,
                "socket_connect_timeout": 5,
                "socket_timeout": 5,
                "retry_on_timeout": True,
                "health_check_interval": 30,
            }

            # Add SSL parameters for rediss:// URLs
            if self.redis_url.startswith("rediss://"):
                conn_params["ssl_cert_reqs"] = "none"

            self.redis_client = redis.from_url(self.redis_url, **conn_params)
            # Test connection
            self.redis_client.ping()
            logger.info(f"Connected to Redis cache at {self.redis_url}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis cache: {e}")
            self.redis_client = None

    def _key(self, category_id: UUID) -> str:
        return f"{KEY_PREFIX}:{category_id}"

    def current_generation(self) -> Optional[int]:
        """
        Invalidation counter, read before computing a value to cache.

        Returns None when Redis is unavailable, in which case nothing should
        be written back.
        """
        if not self.redis_client:
            return None
        try:
            value = self.redis_client.get(GENERATION_KEY)
        except redis.RedisError as e:
            logger.warning(f"Cache generation read failed: {e}")
            return None
        return int(value) if value is not None else 0

    def get_descendant_ids(self, category_id: UUID) -> Optional[List[UUID]]:
        """Cached ids for a category (itself included), None on miss"""
        if not self.redis_client:
            return None
        try:
            cached = self.redis_client.get(self._key(category_id))
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {category_id}: {e}")
            return None
        if cached is None:
            return None
        return [UUID(value) for value in json.loads(cached)]

    def set_descendant_ids(
        self, category_id: UUID, ids: List[UUID], generation: Optional[int] = None
    ) -> bool:
        """
        Store ids for a category.

        With a generation, the write only lands if no invalidation happened
        since that generation was read; otherwise the value may predate a
        committed mutation and is dropped.
        """
        if not self.redis_client:
            return False
        key = self._key(category_id)
        value = json.dumps([str(item) for item in ids])
        try:
            if generation is None:
                self.redis_client.setex(key, self.ttl, value)
                return True

            with self.redis_client.pipeline() as pipe:
                pipe.watch(GENERATION_KEY)
                current = pipe.get(GENERATION_KEY)
                if (int(current) if current is not None else 0) != generation:
                    logger.debug(f"Skipped caching {category_id}: tree changed during read")
                    return False
                pipe.multi()
                pipe.setex(key, self.ttl, value)
                pipe.execute()
            return True
        except redis.WatchError:
            logger.debug(f"Skipped caching {category_id}: invalidated while writing")
            return False
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {category_id}: {e}")
            return False

    def invalidate_all(self) -> int:
        """Drop every cached descendant list"""
        if not self.redis_client:
            return 0
        try:
            # Bump first so in-flight readers stop writing back
            self.redis_client.incr(GENERATION_KEY)
            keys = list(self.redis_client.scan_iter(match=f"{KEY_PREFIX}:*"))
            if keys:
                self.redis_client.delete(*keys)
            return len(keys)
        except redis.RedisError as e:
            logger.error(f"Cache invalidation failed: {e}")
            return 0

    def handle_event(self, event: CategoryEvent) -> None:
        """Event-bus listener: any tree mutation invalidates the cache"""
        removed = self.invalidate_all()
        logger.debug(f"Invalidated {removed} cached category lists after {event.type.value}")
