"""
Redis caching for the read-only availability views
Entries are short-lived and invalidated per date whenever a claim changes
"""
import json
import logging
from datetime import date
from typing import Any, Optional

from . import config
from .rate_limiter import get_redis_client
from .shared.clock import clinic_today

logger = logging.getLogger(__name__)


class Cache:
    """Redis cache wrapper with automatic serialization; every failure is a miss"""

    def __init__(self):
        self.redis_client = None

    def _get_client(self):
        """Lazy load Redis client"""
        if not config.CACHE_ENABLED:
            return None
        if self.redis_client is None:
            try:
                self.redis_client = get_redis_client()
            except Exception as e:
                logger.warning(f"⚠️ Redis cache unavailable: {e}")
                return None
        return self.redis_client

    def get(self, key: str) -> Optional[Any]:
        client = self._get_client()
        if not client:
            return None

        try:
            value = client.get(key)
            if value:
                logger.debug(f"✅ Cache HIT: {key}")
                return json.loads(value)
            logger.debug(f"❌ Cache MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"❌ Cache get error for {key}: {e}")
            return None

    def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        client = self._get_client()
        if not client:
            return False

        try:
            client.setex(key, ttl, json.dumps(value))
            logger.debug(f"✅ Cache SET: {key} (TTL: {ttl}s)")
            return True
        except Exception as e:
            logger.error(f"❌ Cache set error for {key}: {e}")
            return False

    def delete(self, *keys: str) -> bool:
        client = self._get_client()
        if not client:
            return False

        try:
            client.delete(*keys)
            logger.debug(f"✅ Cache DELETE: {', '.join(keys)}")
            return True
        except Exception as e:
            logger.error(f"❌ Cache delete error for {keys}: {e}")
            return False


# Global cache instance
cache = Cache()

AVAILABLE_DATES_PREFIX = "available_dates"


def slots_key(on_date: date) -> str:
    return f"available_slots:{on_date.isoformat()}"


def get_available_slots_cached(on_date: date) -> Optional[list]:
    return cache.get(slots_key(on_date))


def set_available_slots_cached(on_date: date, slots: list) -> bool:
    return cache.set(slots_key(on_date), slots, config.SLOTS_CACHE_TTL_SECONDS)


def dates_key(today: Optional[date] = None) -> str:
    """The bookable range moves at midnight, so the list is keyed by the current day"""
    return f"{AVAILABLE_DATES_PREFIX}:{(today or clinic_today()).isoformat()}"


def get_available_dates_cached() -> Optional[list]:
    return cache.get(dates_key())


def set_available_dates_cached(dates: list) -> bool:
    return cache.set(dates_key(), dates, config.DATES_CACHE_TTL_SECONDS)


def invalidate_availability(*dates: date) -> bool:
    """Drop cached availability for the given dates and the dates list"""
    keys = [slots_key(d) for d in dates if d is not None]
    return cache.delete(dates_key(), *keys)
