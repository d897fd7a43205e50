"""
contribs.cache — Persistent, file-backed key/value caches.

Modules:
    persistent — PersistentCache (TTL, size bound, atomic writes, pruning).
"""

from contribs.cache.persistent import (
    CACHE_FILE_VERSION,
    CacheEntry,
    PersistentCache,
    create_persistent_cache,
    resolve_state_dir,
)

__all__ = [
    "CACHE_FILE_VERSION",
    "CacheEntry",
    "PersistentCache",
    "create_persistent_cache",
    "resolve_state_dir",
]
