"""
Redis cache for tenant-scoped read models.

Keys: {prefix}:tenant:{tenant_id}:{module}:{key}
Any Redis failure disables the lookup, never the request.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask

logger = logging.getLogger(__name__)


def _encode(value: Any) -> str:
    def default(obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return {"__decimal__": str(obj)}
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")
    return json.dumps(value, default=default)


def _decode(raw: str) -> Any:
    def hook(dct):
        if "__decimal__" in dct:
            return Decimal(dct["__decimal__"])
        return dct
    return json.loads(raw, object_hook=hook)


class TenantCache:
    """Redis-backed cache partitioned by tenant, degrading to a no-op."""

    def __init__(self, app: Optional[Flask] = None):
        self.client: Optional[redis.Redis] = None
        self.enabled = False
        self.prefix = "billing"
        self.default_ttl = 60
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.enabled = app.config.get('CACHE_ENABLED', True)
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'billing')
        self.default_ttl = app.config.get('CACHE_SUMMARY_TTL', 60)

        if not self.enabled:
            logger.info("[CACHE] Disabled via config")
            return

        redis_url = app.config.get('REDIS_URL', 'redis://localhost:6379/0')
        try:
            self.client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=3,
                retry_on_timeout=True,
                health_check_interval=30
            )
            self.client.ping()
            logger.info(f"[CACHE] Redis connected: {redis_url}")
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unavailable ({e}); caching disabled")
            self.enabled = False
            self.client = None

    @property
    def available(self) -> bool:
        return self.enabled and self.client is not None

    def key(self, tenant_id: int, module: str, key: str) -> str:
        return f"{self.prefix}:tenant:{tenant_id}:{module}:{key}"

    def generation_key(self, tenant_id: int, module: str) -> str:
        # Outside the module's namespace so invalidate_module never resets it
        return f"{self.prefix}:tenant:{tenant_id}:generation:{module}"

    def generation(self, tenant_id: int, module: str) -> int:
        """Current generation of a tenant's module; part of every versioned key."""
        if not self.available:
            return 0
        try:
            return int(self.client.get(self.generation_key(tenant_id, module)) or 0)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Generation read failed: {e}")
            return 0

    def bump_generation(self, tenant_id: int, module: str) -> int:
        """Orphan every key built from an earlier generation, including ones stored later."""
        if not self.available:
            return 0
        try:
            return int(self.client.incr(self.generation_key(tenant_id, module)))
        except RedisError as e:
            logger.warning(f"[CACHE] Generation bump failed: {e}")
            return 0

    def get(self, tenant_id: int, module: str, key: str) -> Optional[Any]:
        if not self.available:
            return None
        try:
            raw = self.client.get(self.key(tenant_id, module, key))
            return None if raw is None else _decode(raw)
        except (RedisError, ValueError) as e:
            logger.warning(f"[CACHE] Get failed: {e}")
            return None

    def set(self, tenant_id: int, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.available:
            return False
        try:
            self.client.setex(self.key(tenant_id, module, key), ttl or self.default_ttl, _encode(value))
            return True
        except (RedisError, TypeError) as e:
            logger.warning(f"[CACHE] Set failed: {e}")
            return False

    def memoize(self, tenant_id: int, module: str, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Cache-aside: return the cached value or load, store and return it."""
        cached = self.get(tenant_id, module, key)
        if cached is not None:
            return cached
        value = loader()
        self.set(tenant_id, module, key, value, ttl)
        return value

    def invalidate_module(self, tenant_id: int, module: str) -> int:
        """Drop every key of a tenant's module. Returns the number of keys removed."""
        if not self.available:
            return 0
        pattern = self.key(tenant_id, module, "*")
        removed = 0
        try:
            for cache_key in self.client.scan_iter(match=pattern, count=100):
                removed += self.client.delete(cache_key)
        except RedisError as e:
            logger.warning(f"[CACHE] Invalidate failed for {pattern}: {e}")
            return removed
        if removed:
            logger.info(f"[CACHE] INVALIDATE {pattern} ({removed} keys)")
        return removed


_cache: Optional[TenantCache] = None


def init_cache(app: Flask) -> TenantCache:
    """Create the cache singleton and register it on the app."""
    global _cache
    _cache = TenantCache(app)
    app.extensions['cache'] = _cache
    return _cache


def get_cache() -> TenantCache:
    """Return the cache; a disabled instance when the app never set one up."""
    global _cache
    if _cache is None:
        _cache = TenantCache()
    return _cache
