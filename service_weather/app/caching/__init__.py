"""
Weather service caching package.

Holds the in-process expiring cache that sits between the HTTP routes and
the upstream weather provider. Entries expire a fixed duration after they
are stored; concurrent misses for one key share a single upstream fetch.
"""

from .expiring_cache import CacheEntry, ExpiringCache

__all__ = ["CacheEntry", "ExpiringCache"]
