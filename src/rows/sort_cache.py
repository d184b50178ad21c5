"""
Short-lived cache of computed sort orders.

Maps (table_id, query fingerprint) to the full ordered id list of a sorted
(and possibly filtered / searched) query plus its filtered total, so deep
pages of a large table are served by slicing instead of re-sorting.

  - capacity- and TTL-bounded (TTLCache: purge on read, evict oldest)
  - single-flight population: concurrent requests for one key share one
    Future; the slot is released whether the computation succeeds or fails
  - per-table generation counter: a population that started before an
    invalidation of its table is returned to its callers but not stored
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from config.settings import settings
from src.log import get_logger
from src.observability import metrics
from src.utils.cache import TTLCache

logger = get_logger(__name__)

CacheKey = Tuple[str, str]


@dataclass(frozen=True)
class SortCacheEntry:
    ids: Tuple[str, ...]
    created_at: float
    total_filtered: int

    def page(self, offset: int, limit: int) -> list[str]:
        return list(self.ids[offset:offset + limit])


class SortCache:
    """Process-local sort-order cache.  Construct one per process and inject it."""

    def __init__(
        self,
        max_entries: Optional[int] = None,
        ttl_seconds: Optional[float] = None,
        min_table_rows: Optional[int] = None,
        enabled: Optional[bool] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        cfg = settings.sort_cache
        self.max_entries = max_entries if max_entries is not None else cfg.max_entries
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else cfg.ttl_seconds
        self.min_table_rows = min_table_rows if min_table_rows is not None else cfg.min_table_rows
        self.enabled = cfg.enabled if enabled is None else enabled
        self._clock = clock or time.monotonic
        self._entries = TTLCache(maxsize=self.max_entries, ttl_seconds=self.ttl_seconds, clock=self._clock)
        self._lock = threading.Lock()
        self._pending: dict[CacheKey, Future] = {}
        self._generations: dict[str, int] = {}

    # ── lookup ───────────────────────────────────────────────────────────────

    @staticmethod
    def key(table_id: str, fingerprint: str) -> CacheKey:
        return (table_id, fingerprint)

    def should_cache(self, row_count: int) -> bool:
        return self.enabled and row_count > self.min_table_rows

    def get(self, key: CacheKey) -> Optional[SortCacheEntry]:
        entry = self._entries.get(key)
        metrics.sort_cache_lookups_total.labels(result="hit" if entry is not None else "miss").inc()
        return entry

    def set(
        self,
        key: CacheKey,
        ids: Sequence[str],
        total_filtered: int,
        generation: Optional[int] = None,
    ) -> Optional[SortCacheEntry]:
        """
        Store an ordered id list.  When `generation` is given and the table
        has been invalidated since, nothing is stored and None is returned.
        """
        entry = SortCacheEntry(ids=tuple(ids), created_at=self._clock(), total_filtered=int(total_filtered))
        with self._lock:
            if generation is not None and generation != self._generations.get(key[0], 0):
                metrics.sort_cache_populations_total.labels(outcome="stale").inc()
                return None
            self._entries.set(key, entry)
        metrics.sort_cache_entries.set(len(self._entries))
        return entry

    def invalidate_for_table(self, table_id: str) -> int:
        with self._lock:
            self._generations[table_id] = self._generations.get(table_id, 0) + 1
            removed = self._entries.delete_where(lambda k: k[0] == table_id)
        metrics.sort_cache_invalidations_total.inc()
        metrics.sort_cache_entries.set(len(self._entries))
        if removed:
            logger.debug("[sort_cache] invalidated %d entr(ies) for table %s", removed, table_id)
        return removed

    def generation(self, table_id: str) -> int:
        with self._lock:
            return self._generations.get(table_id, 0)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._pending.clear()
        metrics.sort_cache_entries.set(0)

    def __len__(self) -> int:
        return len(self._entries)

    # ── single-flight population ─────────────────────────────────────────────

    def in_flight(self, key: CacheKey) -> Optional[Future]:
        with self._lock:
            return self._pending.get(key)

    def populate(
        self,
        key: CacheKey,
        compute: Callable[[], Tuple[Sequence[str], int]],
        wait_timeout: Optional[float] = None,
    ) -> SortCacheEntry:
        """
        Compute and store the entry for `key`, or join a population already
        in flight for it.

        The caller that registers the Future runs `compute()` (returning
        (ordered_ids, total_filtered)) on its own thread; everyone else waits
        on that Future for at most `wait_timeout` seconds.  A failed
        computation re-raises in every waiter.
        """
        with self._lock:
            future = self._pending.get(key)
            owner = future is None
            if owner:
                future = Future()
                future.set_running_or_notify_cancel()
                self._pending[key] = future
                generation = self._generations.get(key[0], 0)

        if not owner:
            metrics.sort_cache_populations_total.labels(outcome="coalesced").inc()
            return future.result(timeout=wait_timeout)

        try:
            ids, total = compute()
            entry = self.set(key, ids, total, generation=generation)
            if entry is None:
                entry = SortCacheEntry(ids=tuple(ids), created_at=self._clock(), total_filtered=int(total))
            else:
                metrics.sort_cache_populations_total.labels(outcome="stored").inc()
            future.set_result(entry)
            return entry
        except BaseException as e:
            metrics.sort_cache_populations_total.labels(outcome="failed").inc()
            future.set_exception(e)
            raise
        finally:
            with self._lock:
                if self._pending.get(key) is future:
                    del self._pending[key]
