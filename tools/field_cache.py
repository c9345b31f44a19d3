import json
import os
import time
from typing import Any, Callable, Dict, Optional, Tuple

import redis
from loguru import logger

DEFAULT_TTL = 3600


class FieldCache:
    """Redis-backed cache for resolved CRM field catalogs, with an in-memory fallback."""

    def __init__(self, redis_url: Optional[str] = None, clock: Callable[[], float] = time.time,
                 use_redis: bool = True):
        """Initialize Redis connection."""
        self.clock = clock
        self._memory: Dict[str, Tuple[float, Any]] = {}
        self.r = None

        if not use_redis:
            logger.info("Field cache running in memory mode")
            return

        try:
            redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")
            self.r = redis.from_url(redis_url)
            # Test connection
            self.r.ping()
            logger.info("Redis connection established successfully")
        except Exception as e:
            logger.error(f"Redis connection failed: {e}")
            # Fallback to in-memory storage (per-process only)
            self.r = None

    def get(self, key: str) -> Optional[Any]:
        """
        Look up a cached value.

        Args:
            key: Cache key

        Returns:
            The cached value, or None on a miss or after expiry
        """
        if not key:
            return None

        try:
            if self.r:
                raw = self.r.get(key)
                return json.loads(raw) if raw else None
        except Exception as e:
            logger.error(f"Field cache read failed: {e}")
            return None

        entry = self._memory.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self.clock() >= expires_at:
            self._memory.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL) -> bool:
        """
        Store a JSON-serializable value for ttl seconds.

        Returns:
            True if the value was stored
        """
        if not key:
            logger.warning("Empty key provided to field cache")
            return False

        try:
            if self.r:
                self.r.set(name=key, value=json.dumps(value), ex=ttl)
                return True
        except Exception as e:
            logger.error(f"Field cache write failed: {e}")
            return False

        self._memory[key] = (self.clock() + ttl, value)
        return True

    def clear(self, key: str) -> bool:
        """Manually clear a key (for testing/debugging)."""
        try:
            if self.r:
                return bool(self.r.delete(key))
            return self._memory.pop(key, None) is not None
        except Exception as e:
            logger.error(f"Failed to clear key: {e}")
            return False
