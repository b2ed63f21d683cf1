"""Performance monitoring for the validation service.

The monitor aggregates runtime telemetry so the pipeline, the rule-set cache
and the HTTP layer can record events without embedding aggregation logic.
Everything is in-process; no external backend is required.

Collected domains:
        * Rule-set cache performance (hit/miss ratio, evictions, entry count)
        * Pipeline stage latency (detect, schema, signature, rules, render)
        * Outcomes per detected document version
        * Endpoint latency & error rates

Design principles:
        1. Thread safety via a shared re-entrant lock (`RLock`).
        2. Recording is O(1); summaries are assembled on demand.
        3. Summary outputs are primitive-only dictionaries for JSON encoding.

Example::

        from ebinterface_validation.monitoring import get_monitor
        monitor = get_monitor()
        monitor.record_stage("schema", 0.012)
        print(monitor.get_performance_summary()["stages"]["schema"]["count"])  # -> 1
"""

from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class CacheMetrics:
    """Aggregate rule-set cache metrics.

    Attributes:
        hits: Lookups served from the cache.
        misses: Lookups that required a compilation.
        evictions: Entries dropped by TTL or source-file staleness.
        total_requests: Aggregate hits + misses.
        hit_rate: Rolling hit ratio (0..1).
        cache_size: Current number of entries.
    """

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    total_requests: int = 0
    hit_rate: float = 0.0
    cache_size: int = 0


@dataclass
class TimingMetrics:
    """Latency aggregate for a pipeline stage or an endpoint."""

    count: int = 0
    total_time: float = 0.0
    average_time: float = 0.0
    error_count: int = 0
    last_seen: Optional[datetime] = None
    samples: deque = field(default_factory=lambda: deque(maxlen=100))

    def add(self, elapsed: float, error: bool = False) -> None:
        self.count += 1
        self.total_time += elapsed
        self.average_time = self.total_time / self.count
        self.last_seen = datetime.now()
        self.samples.append(elapsed)
        if error:
            self.error_count += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "average_ms": round(self.average_time * 1000, 2),
            "max_recent_ms": round(max(self.samples, default=0.0) * 1000, 2),
            "error_count": self.error_count,
            "error_rate": round(self.error_count / self.count * 100, 2)
            if self.count
            else 0.0,
        }


class PerformanceMonitor:
    """Central coordinator for recording and querying metrics.

    Intended to be shared as a singleton within a process; see :func:`get_monitor`.
    """

    def __init__(self) -> None:
        self.start_time = datetime.now()
        self._lock = threading.RLock()
        self.cache_metrics = CacheMetrics()
        self.stage_metrics: Dict[str, TimingMetrics] = defaultdict(TimingMetrics)
        self.endpoint_metrics: Dict[str, TimingMetrics] = defaultdict(TimingMetrics)
        self.outcomes: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self.recent_errors: deque = deque(maxlen=100)

    def record_cache_hit(self) -> None:
        with self._lock:
            self.cache_metrics.hits += 1
            self._update_hit_rate()

    def record_cache_miss(self) -> None:
        with self._lock:
            self.cache_metrics.misses += 1
            self._update_hit_rate()

    def record_cache_eviction(self) -> None:
        with self._lock:
            self.cache_metrics.evictions += 1

    def update_cache_size(self, cache_size: int) -> None:
        with self._lock:
            self.cache_metrics.cache_size = cache_size

    def _update_hit_rate(self) -> None:
        metrics = self.cache_metrics
        metrics.total_requests = metrics.hits + metrics.misses
        metrics.hit_rate = metrics.hits / metrics.total_requests

    def record_stage(self, stage: str, elapsed: float, error: bool = False) -> None:
        """Record the latency of one pipeline stage."""
        with self._lock:
            self.stage_metrics[stage].add(elapsed, error)

    def record_outcome(self, version: Optional[str], outcome: str) -> None:
        """Count a validation outcome (``valid``, ``invalid``, ``unknown``) per version."""
        with self._lock:
            self.outcomes[version or "unknown"][outcome] += 1

    def record_endpoint_request(
        self, endpoint: str, response_time: float, status_code: int = 200
    ) -> None:
        """Record an API endpoint invocation (status >= 400 counts as error)."""
        with self._lock:
            error = status_code >= 400
            self.endpoint_metrics[endpoint].add(response_time, error)
            if error:
                self.recent_errors.append(
                    {
                        "endpoint": endpoint,
                        "status_code": status_code,
                        "timestamp": datetime.now().isoformat(),
                    }
                )

    def get_performance_summary(self) -> Dict[str, Any]:
        """Return a consolidated snapshot of every recorded domain."""
        with self._lock:
            top_endpoints = sorted(
                self.endpoint_metrics.items(),
                key=lambda x: x[1].count,
                reverse=True,
            )[:10]
            return {
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": round(
                    (datetime.now() - self.start_time).total_seconds(), 2
                ),
                "cache": self.get_cache_analytics(),
                "stages": {
                    stage: metrics.to_dict()
                    for stage, metrics in self.stage_metrics.items()
                },
                "outcomes": {
                    version: dict(counts) for version, counts in self.outcomes.items()
                },
                "api": {
                    "total_requests": sum(
                        m.count for m in self.endpoint_metrics.values()
                    ),
                    "top_endpoints": [
                        {"endpoint": endpoint, **metrics.to_dict()}
                        for endpoint, metrics in top_endpoints
                    ],
                    "recent_errors": list(self.recent_errors)[-20:],
                },
            }

    def get_cache_analytics(self) -> Dict[str, Any]:
        with self._lock:
            metrics = self.cache_metrics
            return {
                "hits": metrics.hits,
                "misses": metrics.misses,
                "evictions": metrics.evictions,
                "total_requests": metrics.total_requests,
                "hit_rate_percent": round(metrics.hit_rate * 100, 2),
                "cache_size": metrics.cache_size,
                "recommendations": self._get_cache_recommendations(),
            }

    def _get_cache_recommendations(self) -> List[str]:
        recommendations = []
        metrics = self.cache_metrics
        if metrics.total_requests >= 10 and metrics.hit_rate < 0.8:
            recommendations.append(
                "Rule-set cache hit rate is below 80%. Check the cache TTL or "
                "whether rule-set files are being rewritten."
            )
        if metrics.evictions > metrics.hits * 0.1 and metrics.evictions > 0:
            recommendations.append(
                "High eviction rate detected. Compiled rule sets are being rebuilt often."
            )
        return recommendations

    def reset_metrics(self) -> None:
        """Reset all counters (primarily for tests)."""
        with self._lock:
            self.cache_metrics = CacheMetrics()
            self.stage_metrics.clear()
            self.endpoint_metrics.clear()
            self.outcomes.clear()
            self.recent_errors.clear()
            self.start_time = datetime.now()


_monitor: Optional[PerformanceMonitor] = None
_monitor_lock = threading.Lock()


def get_monitor() -> PerformanceMonitor:
    """Return (and lazily initialize) the process-wide monitor."""
    global _monitor
    with _monitor_lock:
        if _monitor is None:
            _monitor = PerformanceMonitor()
        return _monitor
