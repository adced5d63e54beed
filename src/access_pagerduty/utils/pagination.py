"""Offset/limit pagination over list endpoints."""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Generic, TypeVar

T = TypeVar("T")


@dataclass
class Page(Generic[T]):
    items: list[T]
    more: bool


class Paginator(Generic[T]):
    """Lazy iterator over an offset/limit paginated collection.

    Every ``async for`` starts again from offset zero. Pages are fetched only
    as items are consumed; ``stop`` is checked before each further page so a
    search can end without listing the whole collection.
    """

    def __init__(
        self,
        fetch_page: Callable[[int, int], Awaitable[Page[T]]],
        *,
        limit: int = 60,
        stop: Callable[[], bool] | None = None,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be positive")
        self._fetch_page = fetch_page
        self._limit = limit
        self._stop = stop

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        offset = 0
        more = True
        while more:
            page = await self._fetch_page(offset, self._limit)
            for item in page.items:
                yield item
            more = page.more
            offset += self._limit
            if self._stop is not None and self._stop():
                return

    async def find(self, predicate: Callable[[T], bool]) -> T | None:
        """Return the first item matching ``predicate``."""
        async with aclosing(self._iterate()) as items:
            async for item in items:
                if predicate(item):
                    return item
        return None
