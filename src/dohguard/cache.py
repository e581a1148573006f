"""Bounded FIFO cache where each entry has its own TTL."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from cachetools import FIFOCache

from .errors import CacheError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_SECONDS = 300


def cache_key(domain: str, qtype: int) -> str:
    """Brief: Cache key for a wire-format query.

    Example:
      >>> cache_key("example.com", 1)
      'example.com:1'
    """
    return f"{domain}:{int(qtype)}"


def json_cache_key(name: str, qtype: int) -> str:
    """Brief: Cache key for the DNS-JSON query variant.

    Example:
      >>> json_cache_key("example.com", 28)
      'json:example.com:28'
    """
    return f"json:{name}:{int(qtype)}"


def _unpack(key: Any, entry: Any) -> Tuple[float, bytes]:
    """Split a stored entry into (expires_at, value); CacheError when malformed."""
    try:
        expires_at, value = entry
        return float(expires_at), value
    except (TypeError, ValueError) as exc:
        raise CacheError(f"corrupt cache entry for {key!r}") from exc


class _EvictionCountingFIFO(FIFOCache):
    """FIFOCache that reports capacity evictions to its owner."""

    def __init__(self, maxsize: int, on_evict: Callable[[Any], None]) -> None:
        super().__init__(maxsize)
        self._on_evict = on_evict

    def popitem(self) -> Tuple[Any, Any]:
        key, value = super().popitem()
        self._on_evict(key)
        return key, value


class ResolutionCache:
    """Thread-safe bounded cache of DNS responses with per-entry TTL.

    Brief:
        Entries live until their own expiry or until pushed out by newer
        inserts once ``max_entries`` is reached. Eviction is first-in,
        first-out: reads never reorder entries.

    Inputs:
        - max_entries: Positive capacity bound (default 1000).
        - timer: Clock returning seconds as float (default time.monotonic).

    Outputs:
        ResolutionCache instance

    Notes:
        Every operation runs under one RLock; each critical section is O(1).
        An entry tuple is fully built before it is stored, so concurrent
        readers see either the old state or the complete new entry.
        Internal faults are logged and reported as a miss; the cache never
        fails a request.

    Example use:
        >>> cache = ResolutionCache(max_entries=2)
        >>> cache.set("example.com:1", b"dns-response-data", 60)
        >>> cache.get("example.com:1")
        b'dns-response-data'
    """

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        *,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(max_entries) <= 0:
            raise ValueError("max_entries must be a positive integer")
        self.max_entries = int(max_entries)
        self._timer = timer
        self._lock = threading.RLock()
        self._store: FIFOCache = _EvictionCountingFIFO(
            self.max_entries, self._record_capacity_eviction
        )

        # Best-effort counters for the admin stats endpoint.
        self.cache_hits: int = 0
        self.cache_misses: int = 0
        self.evictions_ttl: int = 0
        self.evictions_capacity: int = 0
        self.errors: int = 0

    def _record_capacity_eviction(self, key: Any) -> None:
        self.evictions_capacity += 1
        logger.debug("ResolutionCache size eviction: key=%r", key)

    def get(self, key: str) -> Optional[bytes]:
        """
        Retrieves an item from the cache.

        Inputs:
            key: Cache key, e.g. "example.com:1".

        Outputs:
            The cached bytes, or None if the key is absent, expired, or the
            cache is faulty.
        """
        try:
            now = self._timer()
            with self._lock:
                entry = self._store.get(key)
                if entry is None:
                    self.cache_misses += 1
                    return None
                try:
                    expires_at, value = _unpack(key, entry)
                except CacheError:
                    self._store.pop(key, None)
                    raise
                if now >= expires_at:
                    # Lazy TTL eviction on the read path.
                    self._store.pop(key, None)
                    self.evictions_ttl += 1
                    self.cache_misses += 1
                    return None
                self.cache_hits += 1
                return value
        except CacheError as exc:
            self.errors += 1
            logger.warning("%s; treating as miss", exc)
            return None
        except Exception:
            self.errors += 1
            logger.warning("ResolutionCache get failed for %r", key, exc_info=True)
            return None

    def set(self, key: str, value: bytes, ttl_seconds: float) -> None:
        """
        Adds an item to the cache with a specified TTL.

        Inputs:
            key: Cache key.
            value: Response bytes to store.
            ttl_seconds: Time-to-live in seconds; non-positive values store
                an already-expired entry.
        Outputs:
            None
        """
        try:
            entry = (self._timer() + float(ttl_seconds), bytes(value))
            with self._lock:
                self._store[key] = entry
        except Exception:
            self.errors += 1
            logger.warning("ResolutionCache set failed for %r", key, exc_info=True)

    def purge_expired(self) -> int:
        """Remove expired (and corrupt) entries; return how many expired."""
        now = self._timer()
        removed = 0
        with self._lock:
            for k, entry in list(self._store.items()):
                try:
                    exp, _ = _unpack(k, entry)
                except CacheError as exc:
                    self._store.pop(k, None)
                    self.errors += 1
                    logger.warning("%s; dropped during purge", exc)
                    continue
                if exp <= now:
                    self._store.pop(k, None)
                    removed += 1
            self.evictions_ttl += removed
        return removed

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def stats(self) -> Dict[str, int]:
        """Brief: Summarize cache counters for the admin API."""
        with self._lock:
            return {
                "entries": len(self._store),
                "max_entries": self.max_entries,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "evictions_ttl": self.evictions_ttl,
                "evictions_capacity": self.evictions_capacity,
                "errors": self.errors,
            }
