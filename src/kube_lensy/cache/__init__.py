"""Result cache for short-lived cluster reads."""

from kube_lensy.cache.result_cache import GLOBAL_SCOPE, MISS, CacheEntry, ResultCache, make_key

__all__ = ["GLOBAL_SCOPE", "MISS", "CacheEntry", "ResultCache", "make_key"]
