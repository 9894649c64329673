"""Dependency cache module.

This module handles:
- Target-partitioned cache keys
- Cache storage backends
- Package manager capability
- Restore/install/persist of per-target dependency caches
"""

from crossmatrix.cache.keys import CacheKey, CachePart
from crossmatrix.cache.manager import DependencyCacheManager

__all__ = ["CacheKey", "CachePart", "DependencyCacheManager"]
