from __future__ import annotations

from datetime import datetime, timezone

import pytest

from access_pagerduty.utils.http import join_host_port, normalize_public_base_url, split_host_port
from access_pagerduty.utils.pagination import Page, Paginator
from access_pagerduty.utils.time import format_rfc822, from_unix, to_unix


def _pages(total: int):
    calls: list[tuple[int, int]] = []

    async def fetch(offset: int, limit: int) -> Page[int]:
        calls.append((offset, limit))
        items = list(range(offset, min(offset + limit, total)))
        return Page(items=items, more=offset + limit < total)

    return fetch, calls


@pytest.mark.asyncio
async def test_paginator_walks_all_pages() -> None:
    fetch, calls = _pages(7)
    paginator = Paginator(fetch, limit=3)

    items = [item async for item in paginator]

    assert items == list(range(7))
    assert calls == [(0, 3), (3, 3), (6, 3)]


@pytest.mark.asyncio
async def test_paginator_restarts_from_first_page() -> None:
    fetch, calls = _pages(4)
    paginator = Paginator(fetch, limit=2)

    first = [item async for item in paginator]
    second = [item async for item in paginator]

    assert first == second == [0, 1, 2, 3]
    assert [offset for offset, _ in calls] == [0, 2, 0, 2]


@pytest.mark.asyncio
async def test_paginator_stop_predicate_skips_remaining_pages() -> None:
    fetch, calls = _pages(10)
    seen: list[int] = []
    paginator = Paginator(fetch, limit=2, stop=lambda: 3 in seen)

    async for item in paginator:
        seen.append(item)

    assert seen == [0, 1, 2, 3]
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_paginator_find_is_lazy() -> None:
    fetch, calls = _pages(100)

    found = await Paginator(fetch, limit=5).find(lambda item: item == 7)

    assert found == 7
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_paginator_find_returns_none_when_missing() -> None:
    fetch, _ = _pages(3)
    assert await Paginator(fetch).find(lambda item: item > 10) is None


def test_paginator_rejects_non_positive_limit() -> None:
    fetch, _ = _pages(1)
    with pytest.raises(ValueError):
        Paginator(fetch, limit=0)


@pytest.mark.parametrize(
    ("addr", "expected"),
    [
        (":8081", ("0.0.0.0", 8081)),
        ("localhost:8443", ("localhost", 8443)),
        ("example.com", ("example.com", 443)),
        ("[::1]:9000", ("::1", 9000)),
        ("127.0.0.1:0", ("127.0.0.1", 0)),
    ],
)
def test_split_host_port(addr: str, expected: tuple[str, int]) -> None:
    assert split_host_port(addr) == expected


@pytest.mark.parametrize("addr", ["", "host:port", "host:70000", "[::1"])
def test_split_host_port_rejects_invalid(addr: str) -> None:
    with pytest.raises(ValueError):
        split_host_port(addr)


def test_join_host_port_brackets_ipv6() -> None:
    assert join_host_port("::1", 8081) == "[::1]:8081"
    assert join_host_port("localhost", 8081) == "localhost:8081"


def test_normalize_public_base_url() -> None:
    assert normalize_public_base_url("example.com") == "https://example.com"
    assert normalize_public_base_url("HTTPS://example.com:8443/") == "https://example.com:8443"
    with pytest.raises(ValueError, match="http or https"):
        normalize_public_base_url("ftp://example.com")
    with pytest.raises(ValueError, match="query or fragment"):
        normalize_public_base_url("https://example.com/?a=b")


def test_format_rfc822() -> None:
    created = datetime(2020, 5, 17, 9, 30, tzinfo=timezone.utc)
    assert format_rfc822(created) == "17 May 20 09:30 UTC"
    assert format_rfc822(created.replace(tzinfo=None)) == "17 May 20 09:30 UTC"


@pytest.mark.parametrize(
    ("month", "name"),
    list(
        enumerate(
            ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
            start=1,
        )
    ),
)
def test_format_rfc822_month_names(month: int, name: str) -> None:
    assert format_rfc822(datetime(2006, month, 2, 15, 4, tzinfo=timezone.utc)) == (
        f"02 {name} 06 15:04 UTC"
    )


def test_format_rfc822_ignores_locale_month_names() -> None:
    class LocalizedDatetime(datetime):
        def strftime(self, fmt: str) -> str:
            return super().strftime(fmt.replace("%b", "Mai"))

    created = LocalizedDatetime(2020, 5, 17, 9, 30, tzinfo=timezone.utc)
    assert format_rfc822(created) == "17 May 20 09:30 UTC"


def test_unix_conversion() -> None:
    created = datetime(2020, 5, 17, 9, 30, tzinfo=timezone.utc)
    assert to_unix(created) == 1589707800
    assert from_unix(1589707800) == created
