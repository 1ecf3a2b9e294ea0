"""
Expiring Cache keyed on Weak Handles
====================================

Memoizes shared objects without owning them. Each entry is a WeakHandle,
so a cached object lives exactly as long as somebody outside the cache
holds a StrongHandle to it; after that the entry is expired and the next
lookup of its key evicts it and, for ``get_or_insert``, rebuilds it.

Per-key states: absent -> live -> expired -> absent.

Expired entries of keys that are never looked up again are not removed
automatically. Callers that need bounded memory must call ``sweep()``
periodically.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Tuple

from .errors import EmptyHandleError
from .ref_counting import StrongHandle, WeakHandle

logger = logging.getLogger(__name__)


class CacheStore(ABC):
    """
    Key-value store backing an ExpiringCache.

    Any object providing these four methods can be used; subclassing is
    optional. The cache serializes all calls with its own lock.
    """

    @abstractmethod
    def get(self, key: Hashable) -> Optional[WeakHandle]:
        """Return the handle stored under ``key`` or None"""

    @abstractmethod
    def insert(self, key: Hashable, handle: WeakHandle):
        """Store ``handle`` under ``key``, replacing any existing entry"""

    @abstractmethod
    def remove(self, key: Hashable):
        """Remove ``key`` if present"""

    @abstractmethod
    def items(self) -> Iterable[Tuple[Hashable, WeakHandle]]:
        """Iterate over all (key, handle) entries"""


class DictStore(CacheStore):
    """In-memory store on a plain dict"""

    def __init__(self):
        self._data: Dict[Hashable, WeakHandle] = {}

    def get(self, key: Hashable) -> Optional[WeakHandle]:
        return self._data.get(key)

    def insert(self, key: Hashable, handle: WeakHandle):
        self._data[key] = handle

    def remove(self, key: Hashable):
        self._data.pop(key, None)

    def items(self) -> Iterable[Tuple[Hashable, WeakHandle]]:
        return list(self._data.items())

    def __len__(self) -> int:
        return len(self._data)


class ExpiringCache:
    """
    Cache of shared objects that disappear once nobody else needs them.

    ``build_fn`` runs outside the cache lock, so it may use the cache
    itself. Two threads missing the same key at once may both build; the
    later insert replaces the earlier one and both callers get valid
    handles.
    """

    def __init__(self, store: Optional[CacheStore] = None):
        self._store = store if store is not None else DictStore()
        self._lock = threading.RLock()

        # Statistics
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def get_or_insert(self, key: Hashable,
                      build_fn: Callable[[], StrongHandle]) -> StrongHandle:
        """
        Return a live handle for ``key``, building it with ``build_fn`` on a
        miss or when the cached entry has expired.
        """
        handle = self.get(key)
        if handle is not None:
            return handle

        handle = build_fn()
        if not isinstance(handle, StrongHandle):
            raise TypeError(
                f"build_fn must return a StrongHandle, got {type(handle).__name__}")
        if not handle:
            raise EmptyHandleError(f"build_fn returned an empty handle for {key!r}")

        weak = handle.downgrade()
        with self._lock:
            self._store.insert(key, weak)
        return handle

    def get(self, key: Hashable) -> Optional[StrongHandle]:
        """Look up ``key``; evicts the entry if it has expired"""
        with self._lock:
            weak = self._store.get(key)
            if weak is None:
                self.misses += 1
                return None

            handle = weak.upgrade()
            if handle is not None:
                self.hits += 1
                return handle

            self._store.remove(key)
            self.evictions += 1
            self.misses += 1
        return None

    def invalidate(self, key: Hashable):
        """Remove ``key`` from the cache"""
        with self._lock:
            self._store.remove(key)

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were removed"""
        with self._lock:
            expired = [key for key, weak in self._store.items() if weak.is_expired()]
            for key in expired:
                self._store.remove(key)
            self.evictions += len(expired)

        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))
        return len(expired)

    def clear(self):
        """Remove all entries"""
        with self._lock:
            keys = [key for key, _ in self._store.items()]
            for key in keys:
                self._store.remove(key)

    def live_count(self) -> int:
        """Number of entries whose object is still alive"""
        with self._lock:
            return sum(1 for _, weak in self._store.items() if not weak.is_expired())

    def __len__(self) -> int:
        """Number of entries, expired ones included"""
        with self._lock:
            return sum(1 for _ in self._store.items())

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            entries = sum(1 for _ in self._store.items())
            return {
                'entries': entries,
                'hits': self.hits,
                'misses': self.misses,
                'evictions': self.evictions,
            }
