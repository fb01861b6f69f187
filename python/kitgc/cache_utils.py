"""Caching utilities for repeated cluster lookups"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

from kitgc.image_reference import RegistryOptions

logger = logging.getLogger(__name__)


class TTLCache:
    """Time-To-Live cache with automatic expiration"""

    def __init__(self, ttl_seconds: int = 3600, max_size: Optional[int] = None):
        """Initialize TTL cache

        Args:
            ttl_seconds: Time to live in seconds (default: 1 hour)
            max_size: Maximum number of items (None = unlimited)
        """
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self._access_times: Dict[str, float] = {}

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired"""
        if key not in self._cache:
            return None

        value, expiry_time = self._cache[key]

        if time.time() > expiry_time:
            self.remove(key)
            return None

        # Update access time for LRU eviction
        self._access_times[key] = time.time()
        return value

    def set(self, key: str, value: Any) -> None:
        """Set value in cache with TTL"""
        expiry_time = time.time() + self.ttl_seconds

        # If at max size, evict least recently used
        if self.max_size and len(self._cache) >= self.max_size and key not in self._cache:
            lru_key = min(self._access_times.items(), key=lambda x: x[1])[0]
            self.remove(lru_key)

        self._cache[key] = (value, expiry_time)
        self._access_times[key] = time.time()

    def clear(self) -> None:
        """Clear all cached items"""
        self._cache.clear()
        self._access_times.clear()

    def remove(self, key: str) -> None:
        """Remove specific key from cache"""
        self._cache.pop(key, None)
        self._access_times.pop(key, None)

    def size(self) -> int:
        """Get current cache size"""
        return len(self._cache)


class PlatformOptionsCache:
    """Registry options per IntegrationPlatform, keyed by ``namespace/platform``.

    Resolving whether a kit's registry is insecure needs the owning
    IntegrationPlatform; kits of the same platform share the answer, so the
    lookup is done once per key. The cache is handed explicitly to the squasher
    and the deleter, which lets tests seed it with fixed options.
    """

    def __init__(self, cluster_client, default_platform: str = "camel-k",
                 ttl_seconds: int = 3600, max_size: Optional[int] = 100, enabled: bool = True):
        self.cluster_client = cluster_client
        self.default_platform = default_platform
        self.enabled = enabled
        self._cache = TTLCache(ttl_seconds=ttl_seconds, max_size=max_size)

    def key_for(self, kit) -> str:
        platform_name = kit.platform or self.default_platform
        return f"{kit.namespace}/{platform_name}"

    def seed(self, key: str, options: RegistryOptions) -> None:
        self._cache.set(key, options)

    def get_options(self, kit) -> RegistryOptions:
        """Return the registry options that apply to the kit's image."""
        key = self.key_for(kit)
        if self.enabled:
            options = self._cache.get(key)
            if options is not None:
                logger.debug(f"Cache hit for registry options: {key}")
                return options
            logger.debug(f"Cache miss for registry options: {key}")

        platform = self.cluster_client.get_platform(kit.namespace, kit.platform or self.default_platform)
        options = RegistryOptions(insecure=platform.registry_insecure)
        if self.enabled:
            self._cache.set(key, options)
        return options

    def clear(self) -> None:
        self._cache.clear()
