from sift.cache.layer import CacheLayer, CacheScope, scoped_key
from sift.cache.tiers import DurableTier, HotTier, SharedTier

__all__ = ["CacheLayer", "CacheScope", "scoped_key", "HotTier", "SharedTier", "DurableTier"]
