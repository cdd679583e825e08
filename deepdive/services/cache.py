"""
Result cache for drill-down views.

Entries are keyed by a deterministic serialization of
(perspective, filters, period1, period2):

    "{perspective}_{json(filters)}_{p1.start}_{p1.end}_{p2.start}_{p2.end}"

Filter keys are sorted and list values are de-duplicated and sorted, so
equivalent filter sets produce the same key regardless of insertion order;
a one-element list is the same selection as the bare id. A simplified
filter, when present, is serialized into the filter JSON under "clauses".

An entry is fresh while now - fetched_at < ttl. Stale entries are never
served; they stay until replaced or evicted. The store is bounded: past
max_entries the least recently used entry is evicted.

Access is synchronous and unlocked; each drill-down session owns one cache
and runs on one event loop.
"""

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Mapping, Optional

from deepdive.models.enums import PerspectiveId
from deepdive.models.schemas import (
    CacheEntry,
    ComparisonResult,
    PeriodRange,
    SimplifiedFilter,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0
DEFAULT_MAX_ENTRIES = 256


def canonical_filters(filters: Mapping[str, Any]) -> Dict[str, Any]:
    """Filter map with empty values dropped and list values normalised."""
    canonical: Dict[str, Any] = {}
    for key in sorted(filters):
        value = filters[key]
        if value is None or value == '' or value == []:
            continue
        if isinstance(value, (list, tuple, set)):
            values = sorted({str(v) for v in value})
            canonical[key] = values[0] if len(values) == 1 else values
        else:
            canonical[key] = str(value)
    return canonical


def make_cache_key(
    perspective: PerspectiveId,
    filters: Mapping[str, Any],
    period1: PeriodRange,
    period2: PeriodRange,
    simplified_filter: Optional[SimplifiedFilter] = None,
) -> str:
    """Deterministic cache key for one comparison view."""
    payload: Dict[str, Any] = canonical_filters(filters)
    if simplified_filter is not None and simplified_filter.clauses:
        payload['clauses'] = simplified_filter.model_dump(mode='json', exclude={'name'})

    filters_json = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return (
        f"{PerspectiveId(perspective).value}_{filters_json}_"
        f"{period1.start.isoformat()}_{period1.end.isoformat()}_"
        f"{period2.start.isoformat()}_{period2.end.isoformat()}"
    )


class ResultCache:
    """
    TTL + LRU store of comparison results.

    Args:
        ttl_seconds: Freshness window.
        max_entries: LRU bound.
        clock: Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    key = staticmethod(make_cache_key)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.fetched_at < self.ttl_seconds

    def get(self, key: str) -> Optional[CacheEntry]:
        """Fresh entry for key, or None (missing or stale)."""
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Cache miss: {key}")
            return None
        if not self.is_fresh(entry):
            logger.debug(f"Cache stale: {key}")
            return None
        self._entries.move_to_end(key)
        logger.debug(f"Cache hit: {key}")
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        """Insert or replace an entry, evicting the least recently used."""
        self._entries[key] = entry
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache evicted: {evicted}")

    def store(self, key: str, result: ComparisonResult) -> CacheEntry:
        """Stamp a fresh result with the current clock and put it."""
        entry = CacheEntry(
            key=key,
            data=result.records,
            summary=result.summary,
            fetched_at=self.clock(),
        )
        self.put(key, entry)
        return entry

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
