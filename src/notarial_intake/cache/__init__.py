"""
Page result caching: local fingerprint store and server-side cache check.
"""

from .fingerprint_store import FingerprintStore, FingerprintKey, CacheEntry, CacheStatistics
from .cache_check import CacheCheckClient, CacheCheckResult
