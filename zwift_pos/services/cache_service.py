"""
Redis cache for read-mostly POS views (store settings, recent sales).

Keys follow ``{prefix}:{module}:{key}``. When Redis is disabled or stops
answering, every lookup misses and the loaders hit the database directly.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

import redis
from redis.exceptions import RedisError
from flask import Flask, current_app

logger = logging.getLogger(__name__)

# cache module -> config key holding its TTL in seconds
MODULE_TTL_KEYS: Dict[str, str] = {
    'settings': 'CACHE_SETTINGS_TTL',
    'recent_sales': 'CACHE_RECENT_SALES_TTL',
}

_DECIMAL_TAG = '__decimal__'


def _encode(value: Any) -> str:
    """JSON with Decimals kept exact, so cached money never turns into floats."""
    def default(obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return {_DECIMAL_TAG: str(obj)}
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        raise TypeError(f"Cannot cache {type(obj).__name__}")
    return json.dumps(value, default=default)


def _decode(raw: str) -> Any:
    def object_hook(obj: Dict[str, Any]) -> Any:
        if _DECIMAL_TAG in obj:
            return Decimal(obj[_DECIMAL_TAG])
        return obj
    return json.loads(raw, object_hook=object_hook)


class CacheService:
    """Module-scoped cache-aside helper over Redis."""

    def __init__(self, app: Optional[Flask] = None, client: Optional[redis.Redis] = None):
        self.client: Optional[redis.Redis] = client
        self.prefix = 'zwift'
        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self.prefix = app.config.get('CACHE_KEY_PREFIX', 'zwift')
        if not app.config.get('CACHE_ENABLED', True):
            logger.info("[CACHE] Disabled via config")
            self.client = None
            return
        if self.client is not None:
            return

        redis_url = app.config.get('REDIS_URL', 'redis://redis:6379/0')
        try:
            client = redis.from_url(redis_url, decode_responses=True,
                                    socket_connect_timeout=3, socket_timeout=3,
                                    retry_on_timeout=True, health_check_interval=30)
            client.ping()
        except RedisError as e:
            logger.warning(f"[CACHE] Redis unreachable at {redis_url}: {e}. Serving from the database.")
            return
        self.client = client
        logger.info(f"[CACHE] Redis connected: {redis_url}")

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _key(self, module: str, key: str) -> str:
        return f"{self.prefix}:{module}:{key}"

    def _degrade(self, action: str, error: Exception) -> None:
        # Drop the client; later calls go straight to the loaders
        logger.warning(f"[CACHE] {action} failed, disabling cache: {error}")
        self.client = None

    def _ttl(self, module: str) -> int:
        config_key = MODULE_TTL_KEYS.get(module, 'CACHE_DEFAULT_TTL')
        return int(current_app.config.get(config_key, current_app.config.get('CACHE_DEFAULT_TTL', 60)))

    def get(self, module: str, key: str) -> Optional[Any]:
        if not self.enabled:
            return None
        try:
            raw = self.client.get(self._key(module, key))
        except RedisError as e:
            self._degrade('GET', e)
            return None
        if raw is None:
            return None
        try:
            return _decode(raw)
        except json.JSONDecodeError:
            logger.warning(f"[CACHE] Unreadable entry {self._key(module, key)}, ignoring")
            return None

    def set(self, module: str, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        payload = _encode(value)
        try:
            self.client.setex(self._key(module, key), ttl or self._ttl(module), payload)
        except RedisError as e:
            self._degrade('SET', e)
            return False
        return True

    def memoize(self, module: str, key: str, loader_fn: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        """Return the cached value, or load it and cache it for the module's TTL."""
        cached = self.get(module, key)
        if cached is not None:
            return cached
        value = loader_fn()
        self.set(module, key, value, ttl)
        return value

    def invalidate_module(self, module: str) -> int:
        """Drop every cached entry of one module. Returns the number of keys removed."""
        if not self.enabled:
            return 0
        pattern = self._key(module, '*')
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            if keys:
                self.client.delete(*keys)
        except RedisError as e:
            self._degrade('INVALIDATE', e)
            return 0
        if keys:
            logger.info(f"[CACHE] Invalidated {pattern} ({len(keys)} keys)")
        return len(keys)


_cache_service: Optional[CacheService] = None


def init_cache(app: Flask) -> None:
    """Create the process-wide cache and register it on the app."""
    global _cache_service
    _cache_service = CacheService(app)
    app.extensions['cache'] = _cache_service


def get_cache() -> CacheService:
    if _cache_service is None:
        raise RuntimeError("Cache not initialized.")
    return _cache_service
