"""
Thread-safe usage statistics for the dohguard query pipeline.

Tracks query totals, the allow/block split and a bounded table of the most
frequently blocked domains.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TOP_DOMAINS_CAP = 100
DEFAULT_TOP_N = 10


class TopK:
    """
    Top-K heavy hitters tracker with a hard size cap.

    Inputs (constructor):
        capacity: Maximum number of keys retained

    Outputs:
        TopK instance for adding keys and exporting top N

    When an insert pushes the table past ``capacity`` it is sorted by count
    descending and truncated back to ``capacity``; long-tail keys are
    dropped. Ties keep their earlier position, so older keys survive.

    Example:
        >>> tracker = TopK(capacity=2)
        >>> for key in ["a", "a", "b", "c"]:
        ...     tracker.add(key)
        >>> tracker.export(5)
        [('a', 2), ('b', 1)]
    """

    def __init__(self, capacity: int = DEFAULT_TOP_DOMAINS_CAP) -> None:
        self.capacity = max(1, int(capacity))
        self.counts: Dict[str, int] = {}

    def add(self, key: str) -> None:
        self.counts[key] = self.counts.get(key, 0) + 1
        if len(self.counts) > self.capacity:
            self.trim()

    def trim(self) -> None:
        """
        Keep only the ``capacity`` highest-count keys.

        Inputs:
            None

        Outputs:
            None
        """
        if len(self.counts) <= self.capacity:
            return
        items = sorted(self.counts.items(), key=lambda x: x[1], reverse=True)
        self.counts = dict(items[: self.capacity])

    def export(self, n: int) -> List[Tuple[str, int]]:
        """
        Export top N items sorted by count descending.

        Inputs:
            n: Number of top items to return

        Outputs:
            List of (key, count) tuples sorted by count descending
        """
        items = sorted(self.counts.items(), key=lambda x: x[1], reverse=True)
        return items[: max(0, n)]

    def __len__(self) -> int:
        return len(self.counts)


@dataclass
class StatsSnapshot:
    """
    Point-in-time copy of the statistics, safe to serialize outside the lock.

    Inputs (constructor):
        All fields provided by StatsTracker.snapshot()
    """

    total_queries: int
    blocked_queries: int
    allowed_queries: int
    block_rate_percent: str
    uptime_seconds: int
    top10: List[Tuple[str, int]]
    counters: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        """Brief: JSON-friendly mapping with top10 as [{domain, count}] rows."""
        data = asdict(self)
        data["top10"] = [{"domain": d, "count": c} for d, c in self.top10]
        return data


class StatsTracker:
    """
    Thread-safe statistics aggregator for the DoH filtering pipeline.

    Inputs (constructor):
        top_domains_cap: Size bound of the blocked-domains table (default 100)
        top_n: Number of entries exported in snapshots (default 10)
        timer: Wall clock used for start time and uptime (default time.time)

    Outputs:
        StatsTracker instance for recording events and taking snapshots

    All public methods are guarded by a single RLock. Every critical section
    is O(1) except the trim that runs when the blocked-domains table crosses
    its cap. Counts are exact; once the cap is reached the blocked-domains
    table keeps only the most frequent entries.

    Example:
        >>> tracker = StatsTracker()
        >>> tracker.record_total()
        >>> tracker.record_blocked("doubleclick.net")
        >>> tracker.snapshot().block_rate_percent
        '100.00'
    """

    def __init__(
        self,
        top_domains_cap: int = DEFAULT_TOP_DOMAINS_CAP,
        top_n: int = DEFAULT_TOP_N,
        timer: Callable[[], float] = time.time,
    ) -> None:
        self._lock = threading.RLock()
        self._timer = timer
        self.top_n = max(1, int(top_n))
        self.start_time: float = timer()

        self.total_queries = 0
        self.blocked_queries = 0
        self.allowed_queries = 0
        # Secondary counters (cache outcome, upstream failures).
        self._counters: Dict[str, int] = defaultdict(int)
        self._top_blocked = TopK(capacity=top_domains_cap)

    def record_total(self) -> None:
        with self._lock:
            self.total_queries += 1

    def record_allowed(self) -> None:
        with self._lock:
            self.allowed_queries += 1

    def record_blocked(self, domain: str) -> None:
        """Record a blocked query and bump ``domain`` in the top table.

        Inputs:
            domain: Blocked QNAME (already normalized)

        Outputs:
            None
        """
        with self._lock:
            self.blocked_queries += 1
            if domain:
                self._top_blocked.add(domain)

    def record_cache_hit(self) -> None:
        self._bump("cache_hits")

    def record_cache_miss(self) -> None:
        self._bump("cache_misses")

    def record_upstream_failure(self) -> None:
        self._bump("upstream_failures")

    def record_fallback_used(self) -> None:
        self._bump("upstream_fallbacks")

    def _bump(self, name: str) -> None:
        with self._lock:
            self._counters[name] += 1

    def trim(self) -> None:
        with self._lock:
            self._top_blocked.trim()

    @property
    def top_blocked_domains(self) -> Dict[str, int]:
        """Copy of the bounded blocked-domain -> count table."""
        with self._lock:
            return dict(self._top_blocked.counts)

    def snapshot(self) -> StatsSnapshot:
        """
        Take a consistent snapshot of all counters.

        Inputs:
            None

        Outputs:
            StatsSnapshot; block_rate_percent is blocked/total*100 with two
            decimals and "0.00" when no queries were seen.
        """
        with self._lock:
            total = self.total_queries
            blocked = self.blocked_queries
            allowed = self.allowed_queries
            top = self._top_blocked.export(self.top_n)
            counters = dict(self._counters)
            uptime = self._timer() - self.start_time

        rate = (blocked / total * 100.0) if total else 0.0
        return StatsSnapshot(
            total_queries=total,
            blocked_queries=blocked,
            allowed_queries=allowed,
            block_rate_percent=f"{rate:.2f}",
            uptime_seconds=int(max(0.0, uptime)),
            top10=top,
            counters=counters,
        )

    def reset(self, start_time: Optional[float] = None) -> None:
        """Clear every counter and restart the uptime clock."""
        with self._lock:
            self.total_queries = 0
            self.blocked_queries = 0
            self.allowed_queries = 0
            self._counters.clear()
            self._top_blocked = TopK(capacity=self._top_blocked.capacity)
            self.start_time = self._timer() if start_time is None else start_time
