"""
Sales register access: cache first, Tally on a miss, neighbours in the
background.

Tally has no notion of paging, so a page miss loads the whole window, applies
the search filter and slices. Since the whole window is in hand at that
point, the pages within the prefetch radius are cached from the same load;
background prefetch only goes back to Tally for pages beyond them, and
concurrent prefetches of one window share a single load.

Requests to the gateway go through a gate (one at a time by default) because
Tally handles concurrent exports badly. Explicit page requests are not
deduplicated against each other; only prefetches are.
"""

import asyncio
import logging
import math
from typing import AbstractSet, Any, Callable, Dict, List, Optional

from tally_sales import config
from tally_sales.cache import SalesCache
from tally_sales.client import TallyClient
from tally_sales.errors import ValidationError, VoucherNotFound
from tally_sales.models import PageResult, QueryWindow, SalesStatistics, Voucher
from tally_sales.prefetch import PrefetchScheduler
from tally_sales.reconstruction import find_voucher, reconstruct
from tally_sales.statistics import compute_statistics
from tally_sales.xml_tree import parse

logger = logging.getLogger("TallySalesService")

RawFetch = Callable[[QueryWindow], str]
DetailFetch = Callable[[str, str], str]


def matches_search(vch: Voucher, search_filter: str) -> bool:
    if not search_filter:
        return True
    needle = search_filter.lower()
    haystack = [vch.voucher_number, vch.party_name, vch.reference, vch.narration]
    haystack.extend(item.name for item in vch.items)
    return any(needle in field.lower() for field in haystack if field)


def total_pages_for(total_count: int, page_size: int) -> int:
    return max(1, math.ceil(total_count / page_size))


class SalesService:
    def __init__(
        self,
        fetch_raw: Optional[RawFetch] = None,
        cache: Optional[SalesCache] = None,
        allowed_types: AbstractSet[str] = config.SALES_ALLOWED_TYPES,
        prefetch_radius: int = config.SALES_PREFETCH_PAGES,
        max_concurrent_requests: int = 1,
        fetch_detail: Optional[DetailFetch] = None,
    ):
        if fetch_raw is None or fetch_detail is None:
            client = TallyClient()
            fetch_raw = fetch_raw or client.fetch_sales_vouchers
            fetch_detail = fetch_detail or client.fetch_voucher_detail
        self._fetch_raw = fetch_raw
        self._fetch_detail = fetch_detail
        self.cache = cache or SalesCache(config.SALES_CACHE_TTL, config.SALES_CACHE_MAX_ENTRIES)
        self.allowed_types = frozenset(allowed_types)
        self.prefetch_radius = prefetch_radius
        self._gate = asyncio.Semaphore(max_concurrent_requests)
        self._schedulers: Dict[str, PrefetchScheduler] = {}
        self._shared_loads: Dict[str, "asyncio.Task[List[Voucher]]"] = {}

    # ========================================================================
    # FETCH PATH
    # ========================================================================

    async def load_vouchers(self, window: QueryWindow) -> List[Voucher]:
        """Every voucher in the window that passes the type and search filters."""
        window.validate_for_fetch()
        async with self._gate:
            raw = await asyncio.to_thread(self._fetch_raw, window)
        doc = parse(raw)
        vouchers = reconstruct(doc, self.allowed_types)
        if window.search_filter:
            vouchers = [v for v in vouchers if matches_search(v, window.search_filter)]
        return vouchers

    async def fetch_page(self, window: QueryWindow, page: int) -> PageResult:
        """Load from Tally, cache page ``page`` and its neighbours, return it."""
        vouchers = await self.load_vouchers(window)
        return self.store_pages(window, page, vouchers)

    def store_pages(self, window: QueryWindow, page: int, vouchers: List[Voucher]) -> PageResult:
        """Cache ``page`` and every page within the prefetch radius from one loaded window."""
        total = len(vouchers)
        size = window.page_size
        last = min(total_pages_for(total, size), page + max(0, self.prefetch_radius))
        neighbours = [p for p in range(max(1, page - self.prefetch_radius), last + 1) if p != page]

        for p in neighbours + [page]:
            start = (p - 1) * size
            self.cache.pages.put_page(window, p, vouchers[start:start + size], total)
        if not window.search_filter:
            self.cache.cache_statistics(window, compute_statistics(vouchers))

        start = (page - 1) * size
        return PageResult(
            vouchers=vouchers[start:start + size],
            total_count=total,
            page=page,
            page_size=size,
            has_more=page * size < total,
        )

    # ========================================================================
    # CONSUMER INTERFACE
    # ========================================================================

    async def get_page(self, window: QueryWindow, page: int = 1, prefetch: bool = True) -> PageResult:
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}")
        window.validate_for_fetch()

        result = self.cache.pages.get_page(window, page)
        if result is None:
            logger.info(
                "Cache miss | company=%s | %s-%s | page=%d",
                window.company_name, window.from_date, window.to_date, page,
            )
            result = await self.fetch_page(window, page)
        else:
            logger.debug("Cache hit | page=%d | %s", page, self.cache.pages.key_for(window))

        if prefetch:
            self._schedule_prefetch(window, page, result.total_count)
        return result

    async def get_statistics(self, window: QueryWindow) -> SalesStatistics:
        cached = self.cache.get_cached_statistics(window)
        if cached is not None:
            return cached
        vouchers = await self.load_vouchers(window.model_copy(update={"search_filter": ""}))
        statistics = compute_statistics(vouchers)
        self.cache.cache_statistics(window, statistics)
        return statistics

    async def get_voucher(self, company_name: str, guid: str) -> Voucher:
        """Full detail of one voucher of any type, looked up by GUID or remote id."""
        company_name = (company_name or "").strip()
        guid = (guid or "").strip()
        if not company_name:
            raise ValidationError("No company selected. Please select a company first.")
        if not guid:
            raise ValidationError("Voucher GUID is required.")

        key = f"voucher:companyName:{company_name}|guid:{guid}"
        cached = self.cache.scalars.get(key)
        if cached is not None:
            return cached

        async with self._gate:
            raw = await asyncio.to_thread(self._fetch_detail, company_name, guid)
        vch = find_voucher(parse(raw), guid)
        if vch is None:
            raise VoucherNotFound(f"Voucher {guid} not found in {company_name}")
        self.cache.scalars.set(key, vch)
        return vch

    def invalidate(self, from_date: str, to_date: str, company_name: str) -> int:
        removed = self.cache.invalidate(from_date, to_date, company_name)
        self._prune_schedulers()
        return removed

    def clear_cache(self) -> None:
        self.cache.clear()
        self._prune_schedulers()

    def cache_stats(self) -> Dict[str, Any]:
        stats = self.cache.stats()
        stats["background_tasks"] = sum(len(s.in_flight()) for s in self._schedulers.values())
        stats["prefetch_windows"] = len(self._schedulers)
        return stats

    async def drain_prefetch(self) -> None:
        for scheduler in list(self._schedulers.values()):
            await scheduler.drain()

    # ========================================================================
    # PREFETCH
    # ========================================================================

    def _prune_schedulers(self) -> None:
        self._schedulers = {k: s for k, s in self._schedulers.items() if s.in_flight()}

    def _load_shared(self, window: QueryWindow) -> "asyncio.Task[List[Voucher]]":
        """One in-flight window load, shared by every prefetch that needs it."""
        key = self.cache.pages.key_for(window)
        task = self._shared_loads.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(self.load_vouchers(window))
            self._shared_loads[key] = task
            task.add_done_callback(lambda t, k=key: self._shared_loads.pop(k, None))
        return task

    def _schedule_prefetch(self, window: QueryWindow, page: int, total_count: int) -> None:
        if self.prefetch_radius <= 0:
            return
        total_pages = total_pages_for(total_count, window.page_size)
        first = max(1, page - self.prefetch_radius)
        last = min(total_pages, page + self.prefetch_radius)
        if self.cache.pages.is_range_cached(window, first, last):
            return

        key = self.cache.pages.key_for(window)
        scheduler = self._schedulers.get(key)
        if scheduler is None:
            scheduler = self._schedulers[key] = PrefetchScheduler(self.prefetch_radius)

        async def fetch(neighbour: int) -> Optional[PageResult]:
            if self.cache.pages.get_page(window, neighbour) is not None:
                return None
            vouchers = await self._load_shared(window)
            return self.store_pages(window, neighbour, vouchers)

        for task in scheduler.prefetch_around(fetch, page, total_pages):
            task.add_done_callback(lambda _t: self._prune_schedulers())
