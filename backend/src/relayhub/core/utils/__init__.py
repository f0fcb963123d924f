from .cache import (
    BaseCacheManager,
    CacheKey,
    FileCacheManager,
    RedisCacheManager,
    create_cache_manager,
)
from .network import get_local_ip, host_url, subnet_prefix
from .timezone import date_key, iso_now, now_ms, resolve_timezone

__all__ = [
    "CacheKey",
    "BaseCacheManager",
    "FileCacheManager",
    "RedisCacheManager",
    "create_cache_manager",
    "get_local_ip",
    "host_url",
    "subnet_prefix",
    "date_key",
    "iso_now",
    "now_ms",
    "resolve_timezone",
]
