"""
Background prefetch of pages around the one just read.

Prefetch is best-effort: a failed page is logged and forgotten, never
reported to whoever asked for the current page.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger("TallyPrefetch")

DEFAULT_PREFETCH_RADIUS = 3

PageFetch = Callable[[int], Awaitable[Any]]


def pages_around(current_page: int, total_pages: int, radius: int) -> List[int]:
    """Forward pages first, then backward, clamped to [1, total_pages]."""
    forward = [current_page + i for i in range(1, radius + 1) if current_page + i <= total_pages]
    backward = [current_page - i for i in range(1, radius + 1) if current_page - i >= 1]
    return forward + backward


class PrefetchScheduler:
    """Schedules page fetches on the running loop, one task per page at most."""

    def __init__(self, radius: int = DEFAULT_PREFETCH_RADIUS):
        self.radius = radius
        self._in_flight: Dict[int, "asyncio.Task[Any]"] = {}

    def in_flight(self) -> List[int]:
        return sorted(self._in_flight)

    async def _run(self, fetch: PageFetch, page: int) -> Any:
        try:
            return await fetch(page)
        except Exception as exc:
            logger.warning("Failed to prefetch page %d: %s", page, exc)
            return None

    def _forget(self, page: int, task: "asyncio.Task[Any]") -> None:
        if self._in_flight.get(page) is task:
            del self._in_flight[page]

    def schedule(self, fetch: PageFetch, page: int) -> "asyncio.Task[Any]":
        """Start a background fetch of ``page`` unless one is already running."""
        task = self._in_flight.get(page)
        if task is not None:
            return task
        task = asyncio.get_running_loop().create_task(self._run(fetch, page))
        self._in_flight[page] = task
        task.add_done_callback(lambda t, p=page: self._forget(p, t))
        return task

    def prefetch_around(
        self,
        fetch: PageFetch,
        current_page: int,
        total_pages: int,
        radius: Optional[int] = None,
    ) -> List["asyncio.Task[Any]"]:
        radius = self.radius if radius is None else radius
        pages = pages_around(current_page, total_pages, radius)
        if pages:
            logger.debug("Prefetching pages %s around page %d", pages, current_page)
        return [self.schedule(fetch, page) for page in pages]

    async def drain(self) -> None:
        """Wait for every prefetch currently in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)
