from datetime import timedelta

import pytest

from folio.services.cache import CacheManager
from folio.services.ttl import DEFAULT_TTL, get_cache_ttl


@pytest.mark.asyncio
async def test_fresh_entry_is_returned(cache: CacheManager) -> None:
    await cache.set("quotes:AAPL", {"price": 190.5}, ttl=timedelta(minutes=15))

    entry = await cache.get("quotes:AAPL")

    assert entry is not None
    assert entry.value == {"price": 190.5}
    assert cache.get_stats().hits == 1


@pytest.mark.asyncio
async def test_expired_entry_only_served_when_allowed(cache: CacheManager, clock) -> None:
    await cache.set("quotes:AAPL", 190.5, ttl=timedelta(minutes=15))
    clock.advance(15 * 60)

    assert await cache.get("quotes:AAPL") is None

    stale = await cache.get("quotes:AAPL", allow_expired=True)
    assert stale is not None
    assert stale.value == 190.5
    assert stale.age(clock()) == timedelta(minutes=15)
    assert cache.get_stats().stale_hits == 1


@pytest.mark.asyncio
async def test_get_age(cache: CacheManager, clock) -> None:
    assert await cache.get_age("quotes:MSFT") is None

    await cache.set("quotes:MSFT", 1.0)
    clock.advance(42)

    assert await cache.get_age("quotes:MSFT") == timedelta(seconds=42)


@pytest.mark.asyncio
async def test_last_writer_wins(cache: CacheManager, clock) -> None:
    await cache.set("news:AAPL", ["old"])
    clock.advance(5)
    await cache.set("news:AAPL", ["new"])

    entry = await cache.get("news:AAPL")
    assert entry.value == ["new"]
    assert await cache.get_age("news:AAPL") == timedelta(0)


@pytest.mark.asyncio
async def test_max_size_evicts_oldest(clock) -> None:
    cache = CacheManager(max_size=2, clock=clock)
    await cache.set("a", 1)
    clock.advance(1)
    await cache.set("b", 2)
    clock.advance(1)
    await cache.set("c", 3)

    assert await cache.get("a") is None
    assert (await cache.get("c")).value == 3
    assert cache.get_stats().evictions == 1


@pytest.mark.asyncio
async def test_invalidate_and_delete(cache: CacheManager) -> None:
    await cache.set("folio_quotes:AAPL", 1)
    await cache.set("folio_quotes:MSFT", 2)
    await cache.set("folio_news:AAPL", 3)

    assert await cache.invalidate("quotes:") == 2
    assert await cache.delete("folio_news:AAPL")
    assert not await cache.delete("folio_news:AAPL")
    assert cache.get_stats().size == 0


def test_generate_key_prefixes_and_hashes_long_keys(cache: CacheManager) -> None:
    assert cache.generate_key("quotes", "AAPL") == "folio_quotes:AAPL"

    long_key = cache.generate_key("news", "x" * 300)
    assert long_key.startswith("folio_")
    assert len(long_key) == len("folio_") + 16


def test_ttl_policy_by_tier() -> None:
    assert get_cache_ttl("quotes", "free") == timedelta(minutes=15)
    assert get_cache_ttl("quotes", "premium") == timedelta(minutes=5)
    assert get_cache_ttl("commodities", "basic") == timedelta(hours=2)
    assert get_cache_ttl("fundamentals", "premium") == timedelta(days=7)
    assert get_cache_ttl("quotes", "enterprise") == timedelta(minutes=15)
    assert get_cache_ttl("unknown") == DEFAULT_TTL
