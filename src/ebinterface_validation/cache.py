"""Cache for compiled rule sets.

Provides:
    * In-memory dictionary cache with optional TTL + file mtime staleness checks.
    * Single-flight ``get_or_create`` so concurrent first requests for the same
      key run the (expensive) factory exactly once.
    * Hit/miss/eviction reporting to the performance monitor.

Design goals:
    1. Deterministic keys: all cache keys are md5 hashes of argument tuples.
    2. Predictable invalidation: TTL expiry OR upstream file modification time.
       Without a TTL, entries live for the process lifetime.
    3. Read-mostly: cached values are treated as immutable by every caller.

Quick example::

    from ebinterface_validation.cache import RuleSetCache
    cache = RuleSetCache()
    key = cache._make_key("ruleset", "/srv/rules/government.sch")
    compiled = cache.get_or_create(key, lambda: compile_it(), file_path=path)

Compiled XSLT objects cannot be pickled, so unlike schema trees there is no
distributed (Redis) tier for this cache.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .monitoring import PerformanceMonitor, get_monitor


@dataclass
class CacheEntry:
    """Cache entry with optional TTL and source-file fingerprint."""

    data: Any
    timestamp: float = field(default_factory=time.time)
    ttl: Optional[float] = None
    etag: str = ""
    file_mtime: float = 0.0

    def is_expired(self) -> bool:
        if self.ttl is None:
            return False
        return time.time() - self.timestamp > self.ttl

    def is_stale(self, file_path: Path) -> bool:
        """Check if the entry predates the last modification of ``file_path``."""
        if not file_path.exists():
            return True
        return file_path.stat().st_mtime > self.file_mtime


class RuleSetCache:
    """Thread-safe in-memory cache for compiled artifacts."""

    def __init__(
        self,
        default_ttl: Optional[float] = None,
        monitor: Optional[PerformanceMonitor] = None,
        enable_monitoring: bool = True,
    ) -> None:
        self.default_ttl = default_ttl
        self.enable_monitoring = enable_monitoring
        self._monitor = monitor or (get_monitor() if enable_monitoring else None)
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._key_locks: Dict[str, threading.Lock] = {}

    def _make_key(self, *args) -> str:
        """Create cache key from arguments."""
        return hashlib.md5(str(args).encode()).hexdigest()

    def get(self, key: str, file_path: Optional[Path] = None) -> Optional[Any]:
        """Return a live entry's value or ``None``.

        Expired entries, and entries older than ``file_path`` when one is
        given, are evicted on access.
        """
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._record("miss")
                return None
            if entry.is_expired() or (file_path is not None and entry.is_stale(file_path)):
                del self._cache[key]
                self._record("miss")
                self._record("eviction")
                return None
            self._record("hit")
            return entry.data

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        file_path: Optional[Path] = None,
    ) -> None:
        """Insert or replace a value.

        Args:
            key: Cache key.
            data: Value, stored as is.
            ttl: Override of the instance default (``None`` keeps the default).
            file_path: Source file whose mtime and md5 back staleness detection.
        """
        etag = ""
        file_mtime = 0.0
        if file_path and file_path.exists():
            file_mtime = file_path.stat().st_mtime
            etag = hashlib.md5(file_path.read_bytes()).hexdigest()

        with self._lock:
            self._cache[key] = CacheEntry(
                data=data,
                ttl=ttl if ttl is not None else self.default_ttl,
                etag=etag,
                file_mtime=file_mtime,
            )
            if self.enable_monitoring and self._monitor:
                self._monitor.update_cache_size(len(self._cache))

    def get_or_create(
        self,
        key: str,
        factory: Callable[[], Any],
        file_path: Optional[Path] = None,
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the cached value, building it at most once per key.

        Exceptions from ``factory`` propagate and nothing is cached.
        """
        cached = self.get(key, file_path)
        if cached is not None:
            return cached

        with self._lock:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            # another thread may have finished while we waited
            with self._lock:
                entry = self._cache.get(key)
                if entry is not None and not entry.is_expired() and not (
                    file_path is not None and entry.is_stale(file_path)
                ):
                    return entry.data
            value = factory()
            self.set(key, value, ttl=ttl, file_path=file_path)
            return value

    def invalidate(self, key: str) -> None:
        """Remove specific entry from cache."""
        with self._lock:
            self._cache.pop(key, None)
            if self.enable_monitoring and self._monitor:
                self._monitor.update_cache_size(len(self._cache))

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            if self.enable_monitoring and self._monitor:
                self._monitor.update_cache_size(0)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def check_file_staleness(self, key: str, file_path: Path) -> bool:
        """Check if cached entry is stale based on file modification."""
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            return True
        return entry.is_stale(file_path)

    def get_cache_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "cache_size": len(self._cache),
                "default_ttl": self.default_ttl,
                "monitoring_enabled": self.enable_monitoring,
            }

    def _record(self, event: str) -> None:
        if not (self.enable_monitoring and self._monitor):
            return
        if event == "hit":
            self._monitor.record_cache_hit()
        elif event == "miss":
            self._monitor.record_cache_miss()
        else:
            self._monitor.record_cache_eviction()
