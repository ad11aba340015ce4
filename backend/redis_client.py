"""
Optional Redis layer: catalog caching and a shared store for login attempts.
"""
import os
import json
import logging
import redis
from typing import Optional, Dict, Any

from rate_limiter import Attempt

logger = logging.getLogger(__name__)

CATALOG_KEY = "catalog:active"


class RedisClient:
    """Thin wrapper around redis.Redis that degrades to a no-op when Redis is down."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None, client=None):
        self.redis_host = host if host is not None else os.getenv("REDIS_HOST")
        redis_port_env = os.getenv("REDIS_SERVICE_PORT") or os.getenv("REDIS_PORT") or "6379"
        self.redis_port = port or int(str(redis_port_env).split(":")[-1])
        self.client = client

        if self.client is None and self.redis_host:
            try:
                self.client = redis.Redis(
                    host=self.redis_host,
                    port=self.redis_port,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5
                )
                self.client.ping()
            except redis.RedisError as e:
                logger.warning("Could not connect to Redis at %s:%s: %s", self.redis_host, self.redis_port, e)
                self.client = None

    def is_available(self) -> bool:
        if not self.client:
            return False
        try:
            self.client.ping()
            return True
        except redis.RedisError:
            return False

    # ========== Catalog caching ==========

    def cache_catalog(self, catalog: Dict[str, Any], ttl: int = 300) -> bool:
        """Cache active categories and products; ttl in seconds (5 minutes by default)."""
        if not self.is_available():
            return False
        try:
            self.client.setex(CATALOG_KEY, ttl, json.dumps(catalog, default=str))
            return True
        except redis.RedisError as e:
            logger.warning("Catalog caching failed: %s", e)
            return False

    def get_cached_catalog(self) -> Optional[Dict[str, Any]]:
        if not self.is_available():
            return None
        try:
            cached = self.client.get(CATALOG_KEY)
            if cached:
                return json.loads(cached)
        except redis.RedisError as e:
            logger.warning("Reading cached catalog failed: %s", e)
        return None

    def invalidate_catalog_cache(self) -> bool:
        """Drop the cached catalog after a category or product changes."""
        if not self.is_available():
            return False
        try:
            self.client.delete(CATALOG_KEY)
            return True
        except redis.RedisError as e:
            logger.warning("Catalog cache invalidation failed: %s", e)
            return False

    def get_cache_info(self) -> Dict[str, Any]:
        if not self.is_available():
            return {"status": "unavailable"}
        try:
            return {"status": "available", "catalog_cached": bool(self.client.exists(CATALOG_KEY))}
        except redis.RedisError as e:
            return {"status": "error", "error": str(e)}


class RedisAttemptStore:
    """Login attempt store shared by every worker talking to the same Redis."""

    def __init__(self, client, prefix: str = "login_attempts"):
        self.client = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def get(self, key: str) -> Optional[Attempt]:
        data = self.client.hgetall(self._key(key))
        if not data:
            return None
        return Attempt(int(data["count"]), float(data["last_attempt"]))

    def set(self, key: str, attempt: Attempt, ttl: int) -> None:
        name = self._key(key)
        pipe = self.client.pipeline()
        pipe.hset(name, mapping={"count": attempt.count, "last_attempt": attempt.last_attempt})
        pipe.expire(name, ttl)
        pipe.execute()

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))


redis_client = RedisClient()
