"""
Cursor pagination and batching.

Normalizes Graph API paged responses and walks them for the caller:
lazily page by page, eagerly into one bounded list, or in the other
direction by splitting a large input into throttled batches.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_MAX_PAGES = 100
DEFAULT_COLLECT_MAX_PAGES = 50
DEFAULT_MAX_ITEMS = 5000
DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_DELAY_MS = 1000


@dataclass
class PaginationParams:
    """Query parameters that select one page."""

    limit: int | None = None
    after: str | None = None
    before: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_query(self) -> dict[str, Any]:
        """Build query parameters, skipping unset values."""
        query = dict(self.extra)
        if self.limit is not None and self.limit > 0:
            query["limit"] = str(self.limit)
        if self.after:
            query["after"] = self.after
        if self.before:
            query["before"] = self.before
        return query


@dataclass
class PageCursors:
    """Opaque position tokens around a page."""

    before: str | None = None
    after: str | None = None


@dataclass
class PageResult(Generic[T]):
    """One normalized page of results."""

    data: list[T] = field(default_factory=list)
    cursors: PageCursors = field(default_factory=PageCursors)
    next_url: str | None = None
    previous_url: str | None = None
    total_count: int | None = None

    @property
    def has_next_page(self) -> bool:
        return bool(self.next_url or self.cursors.after)

    @property
    def has_previous_page(self) -> bool:
        return bool(self.previous_url or self.cursors.before)

    def next_page_params(self, limit: int | None = None) -> PaginationParams | None:
        """Params for the following page, or None at the end."""
        if not self.has_next_page:
            return None
        after = self.cursors.after or _query_param(self.next_url, "after")
        if not after:
            return None
        return PaginationParams(limit=limit, after=after)

    def previous_page_params(self, limit: int | None = None) -> PaginationParams | None:
        """Params for the preceding page, or None at the start."""
        if not self.has_previous_page or not self.cursors.before:
            return None
        return PaginationParams(limit=limit, before=self.cursors.before)

    def page_info(self) -> dict[str, Any]:
        return {
            "has_next_page": self.has_next_page,
            "has_previous_page": self.has_previous_page,
            "start_cursor": self.cursors.before,
            "end_cursor": self.cursors.after,
            "total_count": self.total_count,
        }


FetchPage = Callable[[PaginationParams], Awaitable[PageResult[T]]]


def parse_page(raw: dict[str, Any] | None) -> PageResult[Any]:
    """Normalize a raw ``{data, paging}`` response.

    Missing ``data`` becomes an empty list, never None.
    """
    raw = raw or {}
    paging = raw.get("paging") or {}
    cursors = paging.get("cursors") or {}

    total_count = None
    summary = raw.get("summary")
    if isinstance(summary, dict) and isinstance(summary.get("total_count"), int):
        total_count = summary["total_count"]

    return PageResult(
        data=list(raw.get("data") or []),
        cursors=PageCursors(
            before=cursors.get("before") or None,
            after=cursors.get("after") or None,
        ),
        next_url=paging.get("next") or None,
        previous_url=paging.get("previous") or None,
        total_count=total_count,
    )


def _query_param(url: str | None, name: str) -> str | None:
    if not url:
        return None
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.netloc:
        return None
    values = parse_qs(parsed.query).get(name)
    return values[0] if values and values[0] else None


def extract_cursor_from_url(url: str | None) -> str | None:
    """Pull the ``after`` (preferred) or ``before`` cursor out of a paging link.

    Malformed or relative URLs yield None.
    """
    return _query_param(url, "after") or _query_param(url, "before")


# =============================================================================
# Traversal
# =============================================================================


class PageIterator(Generic[T]):
    """Async iterator over the item lists of successive pages.

    Holds nothing but the params for the next fetch; iterate a fresh
    instance to traverse again.

    Usage:
        async for items in fetch_all_pages(fetch_page, max_pages=10):
            ...
    """

    def __init__(
        self,
        fetch_page: FetchPage[T],
        initial_params: PaginationParams | None = None,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        self._fetch_page = fetch_page
        self._params: PaginationParams | None = replace(initial_params or PaginationParams())
        self._max_pages = max_pages
        self.pages_fetched = 0

    def __aiter__(self) -> "PageIterator[T]":
        return self

    async def __anext__(self) -> list[T]:
        if self._params is None or self.pages_fetched >= self._max_pages:
            raise StopAsyncIteration

        result = await self._fetch_page(self._params)
        self.pages_fetched += 1

        next_params = result.next_page_params(self._params.limit)
        if next_params is None:
            self._params = None
        else:
            self._params = replace(self._params, after=next_params.after, before=None)

        logger.debug(
            f"Fetched page {self.pages_fetched} ({len(result.data)} items)",
            extra={"page": self.pages_fetched},
        )
        return result.data


def fetch_all_pages(
    fetch_page: FetchPage[T],
    initial_params: PaginationParams | None = None,
    max_pages: int = DEFAULT_MAX_PAGES,
) -> PageIterator[T]:
    """Lazily traverse pages, yielding each page's items.

    Args:
        fetch_page: Async callable fetching one page for the given params
        initial_params: Params of the first page
        max_pages: Most pages to fetch

    Returns:
        An async iterator of item lists
    """
    return PageIterator(fetch_page, initial_params, max_pages)


async def collect_all_pages(
    fetch_page: FetchPage[T],
    initial_params: PaginationParams | None = None,
    max_pages: int = DEFAULT_COLLECT_MAX_PAGES,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> list[T]:
    """Drain pages into one list of at most ``max_items`` items.

    Stops fetching as soon as the ceiling is reached; the surplus of the
    last page is dropped.
    """
    items: list[T] = []

    async for page in fetch_all_pages(fetch_page, initial_params, max_pages):
        items.extend(page)
        if len(items) >= max_items:
            del items[max_items:]
            break

    return items


# =============================================================================
# Batching
# =============================================================================


def create_batches(items: Sequence[T], batch_size: int = DEFAULT_BATCH_SIZE) -> list[list[T]]:
    """Split items into contiguous chunks of ``batch_size``."""
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


async def process_batches(
    items: Sequence[T],
    processor: Callable[[list[T]], Awaitable[Sequence[R]]],
    batch_size: int = DEFAULT_BATCH_SIZE,
    delay_ms: float = DEFAULT_BATCH_DELAY_MS,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[R]:
    """Submit items in order, one batch at a time.

    A failing batch aborts the run and its error propagates; later
    batches are never submitted. ``delay_ms`` separates consecutive
    batches and is not applied after the last one.

    Returns:
        All processor outputs, flattened in batch order
    """
    batches = create_batches(items, batch_size)
    results: list[R] = []

    for index, batch in enumerate(batches):
        try:
            results.extend(await processor(batch))
        except Exception:
            logger.error(f"Batch {index + 1}/{len(batches)} failed")
            raise

        if index < len(batches) - 1 and delay_ms > 0:
            await sleep(delay_ms / 1000.0)

    return results
