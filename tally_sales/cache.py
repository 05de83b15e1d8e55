"""
In-memory caches for reconstructed sales data.

``PaginationCache`` keeps one growable slot list per query window so that
pages can be written in any order (a jump to page 40 before page 2 is
normal when scrolling a 100k-row register). ``ScalarCache`` holds small
precomputed aggregates. ``SalesCache`` owns one of each so that a window can
be invalidated everywhere at once.

All state is process-local and rebuilt from Tally on demand.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from tally_sales.models import (
    PageResult,
    QueryWindow,
    SalesStatistics,
    Voucher,
    normalise_tally_date,
)

logger = logging.getLogger("TallyCache")

DEFAULT_TTL_SECONDS = 300  # 5 minutes
DEFAULT_MAX_ENTRIES = 100


class _EmptySlot:
    """Marks a slot that was created ahead of its data."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY_SLOT"


EMPTY_SLOT = _EmptySlot()

Slot = Union[Voucher, _EmptySlot]


def _matches_all(key: str, needles: List[str]) -> bool:
    return all(needle in key for needle in needles)


# ============================================================================
# PAGINATION CACHE
# ============================================================================

@dataclass
class CachedPage:
    slots: List[Slot] = field(default_factory=list)
    total_count: int = 0
    last_updated: float = 0.0


class PaginationCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CachedPage] = {}

    @staticmethod
    def key_for(window: QueryWindow) -> str:
        return window.cache_key("sales")

    def _fresh_entry(self, window: QueryWindow) -> Optional[CachedPage]:
        entry = self._entries.get(self.key_for(window))
        if entry is None:
            return None
        if self._clock() - entry.last_updated > self.ttl_seconds:
            return None
        return entry

    def get_page(self, window: QueryWindow, page: int) -> Optional[PageResult]:
        """The cached page, or None unless every slot in range is populated and fresh."""
        entry = self._fresh_entry(window)
        if entry is None:
            return None

        start = (page - 1) * window.page_size
        end = start + window.page_size
        page_slots = entry.slots[start:end]

        # A short slice inside the known total means the page was never written.
        expected = max(0, min(window.page_size, entry.total_count - start))
        if len(page_slots) < expected:
            return None
        if any(slot is EMPTY_SLOT for slot in page_slots):
            return None

        return PageResult(
            vouchers=list(page_slots),
            total_count=entry.total_count,
            page=page,
            page_size=window.page_size,
            has_more=page * window.page_size < entry.total_count,
        )

    def put_page(
        self,
        window: QueryWindow,
        page: int,
        vouchers: List[Voucher],
        total_count: int,
    ) -> None:
        key = self.key_for(window)
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = CachedPage()

        start = (page - 1) * window.page_size
        end = start + len(vouchers)
        if len(entry.slots) < end:
            entry.slots.extend([EMPTY_SLOT] * (end - len(entry.slots)))
        entry.slots[start:end] = vouchers

        entry.total_count = total_count
        entry.last_updated = self._clock()
        logger.debug("Cached page %d (%d vouchers, total=%d) for %s", page, len(vouchers), total_count, key)
        self._evict_overflow()

    def is_range_cached(self, window: QueryWindow, start_page: int, end_page: int) -> bool:
        entry = self._fresh_entry(window)
        if entry is None:
            return False

        start = (start_page - 1) * window.page_size
        end = min(end_page * window.page_size, entry.total_count)
        for i in range(start, end):
            if i >= len(entry.slots) or entry.slots[i] is EMPTY_SLOT:
                return False
        return True

    def invalidate(self, *needles: str) -> int:
        doomed = [key for key in self._entries if _matches_all(key, list(needles))]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def _evict_overflow(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k].last_updated)[:overflow]
        for key in oldest:
            del self._entries[key]
        logger.info("Evicted %d pagination entries over limit %d", len(oldest), self.max_entries)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def snapshot(self) -> Dict[str, Any]:
        return {
            key: {
                "slots": [None if s is EMPTY_SLOT else s.model_dump() for s in entry.slots],
                "total_count": entry.total_count,
                "last_updated": entry.last_updated,
            }
            for key, entry in self._entries.items()
        }


# ============================================================================
# SCALAR CACHE
# ============================================================================

@dataclass
class _ScalarEntry:
    value: Any
    inserted_at: float
    expires_at: float


class ScalarCache:
    """Key -> small value, with per-entry expiry and a size cap."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, _ScalarEntry] = {}

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        self._purge()
        now = self._clock()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        # Re-inserting moves the key to the newest position.
        self._entries.pop(key, None)
        self._entries[key] = _ScalarEntry(value=value, inserted_at=now, expires_at=now + ttl)
        self._evict_overflow()

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def invalidate(self, *needles: str) -> int:
        doomed = [key for key in self._entries if _matches_all(key, list(needles))]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def _purge(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if now >= e.expires_at]:
            del self._entries[key]

    def _evict_overflow(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        oldest = sorted(self._entries, key=lambda k: self._entries[k].inserted_at)[:overflow]
        for key in oldest:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> List[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# ============================================================================
# SALES CACHE
# ============================================================================

class SalesCache:
    """The pagination and scalar caches for one process."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.time,
    ):
        self.pages = PaginationCache(ttl_seconds, max_entries, clock)
        self.scalars = ScalarCache(ttl_seconds, max_entries, clock)

    def cache_statistics(self, window: QueryWindow, statistics: SalesStatistics) -> None:
        self.scalars.set(window.stats_key(), statistics)

    def get_cached_statistics(self, window: QueryWindow) -> Optional[SalesStatistics]:
        return self.scalars.get(window.stats_key())

    def invalidate(self, from_date: str, to_date: str, company_name: str) -> int:
        """Drop every page and aggregate whose key mentions all three values."""
        needles = [
            normalise_tally_date(from_date),
            normalise_tally_date(to_date),
            (company_name or "").strip(),
        ]
        removed = self.pages.invalidate(*needles) + self.scalars.invalidate(*needles)
        logger.info("Invalidated %d cache entries for %s", removed, "|".join(needles))
        return removed

    def clear(self) -> None:
        self.pages.clear()
        self.scalars.clear()

    def stats(self) -> Dict[str, Any]:
        size = len(json.dumps(
            {
                "cache": {k: str(self.scalars.get(k)) for k in self.scalars.keys()},
                "pagination": self.pages.snapshot(),
            },
            default=str,
        ))
        return {
            "total_entries": len(self.scalars),
            "pagination_cache_keys": len(self.pages),
            "memory_usage": f"{round(size / 1024)} KB",
        }
