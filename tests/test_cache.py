"""Tests for rule-set caching functionality."""

import tempfile
import threading
import time
from pathlib import Path

import pytest

from ebinterface_validation.cache import CacheEntry, RuleSetCache
from ebinterface_validation.monitoring import PerformanceMonitor


def test_cache_entry_expiration():
    """Test cache entry TTL expiration."""
    entry = CacheEntry(data="test", ttl=0.1)  # 0.1 second TTL

    assert not entry.is_expired()
    time.sleep(0.2)
    assert entry.is_expired()


def test_cache_entry_without_ttl_never_expires():
    entry = CacheEntry(data="test", timestamp=0.0)
    assert not entry.is_expired()


def test_cache_entry_staleness():
    """Test cache staleness based on file modification time."""
    with tempfile.NamedTemporaryFile(mode='w', delete=False) as f:
        f.write("test content")
        path = Path(f.name)

    try:
        # Create entry with current file time
        entry = CacheEntry(data="test", file_mtime=path.stat().st_mtime)
        assert not entry.is_stale(path)

        # Modify file
        time.sleep(0.1)
        path.write_text("modified content")
        assert entry.is_stale(path)

    finally:
        path.unlink()

    # A deleted source is always stale
    assert entry.is_stale(path)


def test_cache_basic_operations():
    """Test basic cache operations."""
    cache = RuleSetCache(monitor=PerformanceMonitor())

    cache.set("test_key", "test_value")
    assert cache.get("test_key") == "test_value"
    assert cache.get("nonexistent") is None

    cache.invalidate("test_key")
    assert cache.get("test_key") is None

    cache.set("other", 1)
    cache.clear()
    assert len(cache) == 0


def test_cache_ttl():
    """Test cache TTL functionality."""
    cache = RuleSetCache(default_ttl=0.1, monitor=PerformanceMonitor())

    cache.set("short_ttl", "value")
    assert cache.get("short_ttl") == "value"

    time.sleep(0.2)
    assert cache.get("short_ttl") is None  # Should be expired


def test_cache_file_tracking(tmp_path):
    """Test file modification tracking."""
    cache = RuleSetCache(monitor=PerformanceMonitor())
    source = tmp_path / "rules.sch"
    source.write_text("<schema/>")

    cache.set("rules", "compiled", file_path=source)
    assert not cache.check_file_staleness("rules", source)
    assert cache.get("rules", file_path=source) == "compiled"

    time.sleep(0.1)
    source.write_text("<schema version='2'/>")
    assert cache.check_file_staleness("rules", source)
    assert cache.get("rules", file_path=source) is None


def test_make_key_is_deterministic():
    cache = RuleSetCache(enable_monitoring=False)
    assert cache._make_key("ruleset", "/a.sch", None) == cache._make_key("ruleset", "/a.sch", None)
    assert cache._make_key("ruleset", "/a.sch", None) != cache._make_key("ruleset", "/a.sch", "quick")


def test_get_or_create_single_flight():
    cache = RuleSetCache(enable_monitoring=False)
    calls = []

    def factory():
        calls.append(1)
        time.sleep(0.1)
        return object()

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(cache.get_or_create("k", factory)))
        for _ in range(8)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(calls) == 1
    assert len({id(result) for result in results}) == 1


def test_get_or_create_does_not_cache_failures():
    cache = RuleSetCache(enable_monitoring=False)

    def failing():
        raise ValueError("boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            cache.get_or_create("k", failing)
    assert len(cache) == 0


def test_monitor_receives_cache_events():
    monitor = PerformanceMonitor()
    cache = RuleSetCache(default_ttl=0.05, monitor=monitor)

    cache.get_or_create("k", lambda: "v")
    cache.get_or_create("k", lambda: "v")
    time.sleep(0.1)
    cache.get("k")

    analytics = monitor.get_cache_analytics()
    assert analytics["hits"] == 1
    assert analytics["misses"] == 2
    assert analytics["evictions"] == 1


def test_cache_stats():
    cache = RuleSetCache(default_ttl=30, enable_monitoring=False)
    cache.set("a", 1)
    stats = cache.get_cache_stats()
    assert stats == {"cache_size": 1, "default_ttl": 30, "monitoring_enabled": False}
