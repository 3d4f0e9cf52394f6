"""
Response caching utilities for frequently accessed data
Reduces database load and improves response times

Two backends share one interface:
- MemoryCache: per-process dict with TTLs (default)
- RedisCache: shared between workers, JSON-serialized values (CACHE_BACKEND=redis)
"""
import fnmatch
import json
import logging
import threading
import time
from datetime import date
from functools import wraps
from typing import Any, Callable, Optional

import redis

from .config import CACHE_BACKEND, CACHE_DEFAULT_TTL, CACHE_SWEEP_INTERVAL, REDIS_URL

logger = logging.getLogger(__name__)


class MemoryCache:
    """Thread-safe in-memory cache: key -> (value, stored_at, ttl)"""

    backend = "memory"

    def __init__(
        self,
        default_ttl: int = CACHE_DEFAULT_TTL,
        sweep_interval: int = CACHE_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, tuple[Any, float, int]] = {}
        self._lock = threading.RLock()
        self._last_sweep = clock()

    def _is_expired(self, stored_at: float, ttl: int, now: float) -> bool:
        return now - stored_at > ttl

    def _maybe_sweep(self) -> None:
        if self._clock() - self._last_sweep >= self.sweep_interval:
            self.sweep_expired()

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache. Expired entries count as missing"""
        with self._lock:
            self._maybe_sweep()
            entry = self._entries.get(key)
            if entry is None:
                logger.debug(f"❌ Cache MISS: {key}")
                return None

            value, stored_at, ttl = entry
            if self._is_expired(stored_at, ttl, self._clock()):
                del self._entries[key]
                logger.debug(f"❌ Cache EXPIRED: {key}")
                return None

            logger.debug(f"✅ Cache HIT: {key}")
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with TTL in seconds (default CACHE_DEFAULT_TTL)"""
        ttl = ttl if ttl is not None else self.default_ttl
        with self._lock:
            self._maybe_sweep()
            self._entries[key] = (value, self._clock(), ttl)
        logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
        return True

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
        if removed:
            logger.debug(f"✅ Cache DELETE: {key}")
        return removed

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern (e.g. 'clinic:12:*'). The whole key must match"""
        with self._lock:
            matching = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in matching:
                del self._entries[key]
        if matching:
            logger.debug(f"✅ Cache DELETE pattern: {pattern} ({len(matching)} keys)")
        return len(matching)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep_expired(self) -> int:
        """Remove expired entries and return how many were removed"""
        with self._lock:
            now = self._clock()
            expired = [
                key for key, (_, stored_at, ttl) in self._entries.items() if self._is_expired(stored_at, ttl, now)
            ]
            for key in expired:
                del self._entries[key]
            self._last_sweep = now

        if expired:
            logger.info(f"🔄 Cache swept {len(expired)} expired entries")
        return len(expired)

    def keys(self, pattern: str = "*") -> list[str]:
        with self._lock:
            return [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]

    def stats(self) -> dict:
        with self._lock:
            return {"backend": self.backend, "size": len(self._entries), "keys": list(self._entries)}

    def get_or_set(self, key: str, fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or compute it with fn and cache it"""
        value = self.get(key)
        if value is not None:
            return value

        value = fn()
        if value is not None:
            self.set(key, value, ttl)
        return value


class RedisCache:
    """Redis cache wrapper with automatic serialization"""

    backend = "redis"

    def __init__(self, url: Optional[str] = REDIS_URL, default_ttl: int = CACHE_DEFAULT_TTL, client=None):
        self.url = url
        self.default_ttl = default_ttl
        self.redis_client = client

    def _get_client(self):
        """Lazy load Redis client"""
        if self.redis_client is None:
            if not self.url:
                logger.warning("⚠️ REDIS_URL not set - Redis cache unavailable")
                return None
            self.redis_client = redis.from_url(
                self.url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            logger.info("✅ Redis cache client created")
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache"""
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
        except redis.RedisError as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

        if value is None:
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        logger.debug(f"✅ Cache HIT: {key}")
        return json.loads(value)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with TTL"""
        client = self._get_client()
        if not client:
            return False

        ttl = ttl if ttl is not None else self.default_ttl
        if ttl <= 0:
            # Redis rejects non-positive expiries
            return False
        try:
            client.setex(key, ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False
        logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
        return True

    def has(self, key: str) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            return bool(client.exists(key))
        except redis.RedisError as e:
            logger.error(f"❌ Cache exists error for {key}: {e}")
            return False

    def delete(self, key: str) -> bool:
        client = self._get_client()
        if not client:
            return False
        try:
            return bool(client.delete(key))
        except redis.RedisError as e:
            logger.error(f"❌ Cache delete error for {key}: {e}")
            return False

    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching pattern (e.g., 'clinic:12:*')"""
        client = self._get_client()
        keys = self.keys(pattern)
        if not client or not keys:
            return 0
        try:
            deleted = client.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"❌ Cache delete pattern error for {pattern}: {e}")
            return 0
        logger.debug(f"✅ Cache DELETE pattern: {pattern} ({deleted} keys)")
        return deleted

    def clear(self) -> None:
        client = self._get_client()
        if not client:
            return
        try:
            client.flushdb()
        except redis.RedisError as e:
            logger.error(f"❌ Cache clear error: {e}")

    def sweep_expired(self) -> int:
        # Redis expires keys itself
        return 0

    def keys(self, pattern: str = "*") -> list[str]:
        client = self._get_client()
        if not client:
            return []
        try:
            return list(client.scan_iter(match=pattern))
        except redis.RedisError as e:
            logger.error(f"❌ Cache scan error for {pattern}: {e}")
            return []

    def stats(self) -> dict:
        keys = self.keys()
        return {"backend": self.backend, "size": len(keys), "keys": keys}

    def get_or_set(self, key: str, fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        value = self.get(key)
        if value is not None:
            return value

        value = fn()
        if value is not None:
            self.set(key, value, ttl)
        return value


def create_cache():
    """Build the cache backend selected by CACHE_BACKEND"""
    if CACHE_BACKEND == "redis":
        logger.info("🔄 Using Redis response cache")
        return RedisCache()
    return MemoryCache()


# Global cache instance
cache = create_cache()


def get_cache():
    return cache


class CacheTTL:
    """Recommended TTLs in seconds per kind of data"""

    # Rarely changes
    PROCEDURES = 24 * 60 * 60
    CATEGORIES = 24 * 60 * 60
    PLANS = 12 * 60 * 60

    # Changes occasionally
    DENTISTS = 6 * 60 * 60
    CLINIC_CONFIG = 6 * 60 * 60

    # Changes often
    PATIENTS = 30 * 60
    APPOINTMENTS_DAY = 5 * 60

    # Near real time (short cache only to reduce load)
    DASHBOARD = 2 * 60
    REPORTS = 5 * 60


class CacheKeys:
    """Cache key builders. Everything tenant-specific lives under clinic:<id>:"""

    @staticmethod
    def clinic(clinic_id: int) -> str:
        return f"clinic:{clinic_id}"

    @staticmethod
    def clinic_config(clinic_id: int) -> str:
        return f"clinic:{clinic_id}:config"

    @staticmethod
    def procedures(clinic_id: int) -> str:
        return f"clinic:{clinic_id}:procedures"

    @staticmethod
    def categories(clinic_id: int) -> str:
        return f"clinic:{clinic_id}:categories"

    @staticmethod
    def dentists(clinic_id: int) -> str:
        return f"clinic:{clinic_id}:dentists"

    @staticmethod
    def patients(clinic_id: int, page: int = 1) -> str:
        return f"clinic:{clinic_id}:patients:page:{page}"

    @staticmethod
    def appointments_day(clinic_id: int, day: str) -> str:
        return f"clinic:{clinic_id}:appointments:{day}"

    @staticmethod
    def appointments_month(clinic_id: int, month: str) -> str:
        return f"clinic:{clinic_id}:appointments:month:{month}"

    @staticmethod
    def dashboard(clinic_id: int) -> str:
        return f"clinic:{clinic_id}:dashboard"

    @staticmethod
    def cost_report(clinic_id: int, period: str) -> str:
        return f"clinic:{clinic_id}:report:costs:{period}"

    @staticmethod
    def subscription(clinic_id: int) -> str:
        return f"clinic:{clinic_id}:subscription"

    @staticmethod
    def plans() -> str:
        return "plans:subscription"


def cached(key_builder: Callable[..., str], ttl: Optional[int] = None):
    """
    Decorator to cache function results

    Args:
        key_builder: Builds the cache key from the function arguments
        ttl: Time to live in seconds (default CACHE_DEFAULT_TTL)

    Example:
        @cached(lambda clinic_id: CacheKeys.dentists(clinic_id), ttl=CacheTTL.DENTISTS)
        def list_dentists(clinic_id: int):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            cache_key = key_builder(*args, **kwargs)
            return get_cache().get_or_set(cache_key, lambda: func(*args, **kwargs), ttl)

        return wrapper

    return decorator


# Invalidation when data changes


def invalidate_clinic(clinic_id: int) -> int:
    """Invalidate every cache entry of a clinic"""
    removed = get_cache().delete_pattern(f"clinic:{clinic_id}:*")
    if get_cache().delete(CacheKeys.clinic(clinic_id)):
        removed += 1
    return removed


def invalidate_reports(clinic_id: int) -> int:
    return get_cache().delete_pattern(f"clinic:{clinic_id}:report:*")


def invalidate_appointments(clinic_id: int, day: date) -> None:
    """Invalidate the day and month appointment lists and the dashboard"""
    get_cache().delete(CacheKeys.appointments_day(clinic_id, day.isoformat()))
    get_cache().delete(CacheKeys.appointments_month(clinic_id, day.strftime("%Y-%m")))
    get_cache().delete(CacheKeys.dashboard(clinic_id))


def invalidate_procedures(clinic_id: int) -> None:
    get_cache().delete(CacheKeys.procedures(clinic_id))
    get_cache().delete(CacheKeys.categories(clinic_id))


def invalidate_plans() -> None:
    get_cache().delete(CacheKeys.plans())


def get_cache_stats(clinic_id: Optional[int] = None) -> dict:
    """Cache statistics. With clinic_id, only that clinic's keys are listed"""
    stats = get_cache().stats()
    if clinic_id is not None:
        own_keys = [
            key for key in stats["keys"] if key == CacheKeys.clinic(clinic_id) or key.startswith(f"clinic:{clinic_id}:")
        ]
        return {"backend": stats["backend"], "size": stats["size"], "clinic_keys": own_keys}
    return stats
