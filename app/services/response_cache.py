"""
In-process response cache with a per-entry TTL.

Entries expire lazily: an expired key reads as absent and is purged on the
next write. Reads never raise, a failed read is reported as a miss.
"""

import json
import threading
import time
from collections import namedtuple
from typing import Any, Callable, Dict, Optional

from cachetools import TLRUCache
from flask import current_app, has_app_context

CACHE_BUSTING_PARAMS = ('_t', 'bypassCache')

_Entry = namedtuple('_Entry', ['value', 'ttl', 'stored_at'])

_MISSING = object()


def derive_items_cache_key(filters: Optional[Dict[str, Any]]) -> str:
    """Cache key for an item query. Cache-busting parameters never contribute to the key."""
    significant = {k: v for k, v in (filters or {}).items() if k not in CACHE_BUSTING_PARAMS}
    return 'items_' + json.dumps(significant, sort_keys=True, separators=(',', ':'), default=str)


def _time_to_use(key, entry, now):
    return now + entry.ttl


class ResponseCache:
    def __init__(self, default_ttl: int = 300, maxsize: int = 10000, timer: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._timer = timer
        self._lock = threading.Lock()
        self._store = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=timer)
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        read_error = None
        with self._lock:
            try:
                entry = self._store.get(key, _MISSING)
            except Exception as e:
                read_error = e
                entry = _MISSING
            if entry is _MISSING:
                self.misses += 1
            else:
                self.hits += 1

        if read_error is not None:
            _log_warning(f"Cache read failed for '{key}', treating as miss: {read_error}")
        return default if entry is _MISSING else entry.value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            if ttl <= 0:
                self._store.pop(key, None)
                return
            self._store[key] = _Entry(value, ttl, self._timer())

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def flush_all(self) -> None:
        with self._lock:
            self._store.clear()
        _log_info("Response cache flushed")

    def __contains__(self, key):
        with self._lock:
            return key in self._store

    def __len__(self):
        with self._lock:
            self._store.expire()
            return len(self._store)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            self._store.expire()
            return {
                'entries': len(self._store),
                'maxEntries': int(self._store.maxsize),
                'hits': self.hits,
                'misses': self.misses,
            }


def _log_info(message):
    if has_app_context():
        current_app.logger.info(f"[CACHE] {message}")


def _log_warning(message):
    if has_app_context():
        current_app.logger.warning(f"[CACHE] {message}")
