"""
Tests for the stale-while-revalidate cache: freshness, background refresh,
coalescing, revalidation and error handling.
"""
import asyncio

import pytest

from app.cache import (
    CacheEntry,
    EntryState,
    InvalidKeyError,
    RequestCoalescer,
    SWRCache,
    UpstreamFetchError,
)


# =============================================================================
# CacheEntry
# =============================================================================

def test_entry_is_fresh_inside_window():
    entry = CacheEntry(key="a", value=1, fetched_at=100.0, freshness_window=60)
    assert entry.state(159.9) is EntryState.FRESH
    assert entry.state(160.0) is EntryState.STALE


def test_entry_state_uses_override_window():
    entry = CacheEntry(key="a", value=1, fetched_at=100.0, freshness_window=60)
    assert entry.state(130.0, freshness_window=10) is EntryState.STALE


# =============================================================================
# get()
# =============================================================================

@pytest.mark.asyncio
async def test_cold_get_fetches_once(clock, fetcher):
    """A key never seen before triggers exactly one fetch."""
    cache = SWRCache("member", freshness_window=300, clock=clock)

    value = await cache.get("octocat", fetcher)

    assert value == "octocat-v1"
    assert fetcher.count() == 1
    assert cache.stats().miss_count == 1


@pytest.mark.asyncio
async def test_fresh_get_does_not_fetch(clock, fetcher):
    cache = SWRCache("member", freshness_window=300, clock=clock)
    await cache.get("octocat", fetcher)

    clock.advance(100)
    value = await cache.get("octocat", fetcher)

    assert value == "octocat-v1"
    assert fetcher.count() == 1
    assert cache.stats().hit_count == 1


@pytest.mark.asyncio
async def test_five_minute_window_scenario(clock, fetcher):
    """Fresh at 200s, stale at 400s with exactly one background refresh."""
    cache = SWRCache("points", freshness_window=300, clock=clock)
    await cache.get("42", fetcher)

    clock.advance(200)
    assert await cache.get("42", fetcher) == "42-v1"
    assert fetcher.count() == 1

    clock.advance(200)
    assert await cache.get("42", fetcher) == "42-v1"
    await cache.drain()

    assert fetcher.count() == 2
    assert cache.peek("42").value == "42-v2"
    assert cache.state("42") is EntryState.FRESH


@pytest.mark.asyncio
async def test_concurrent_stale_gets_share_one_refresh(clock, fetcher):
    cache = SWRCache("commits", freshness_window=60, clock=clock)
    await cache.get("octocat", fetcher)
    clock.advance(120)

    fetcher.gate = asyncio.Event()
    results = await asyncio.gather(*(cache.get("octocat", fetcher) for _ in range(10)))

    assert results == ["octocat-v1"] * 10
    assert cache.state("octocat") is EntryState.REFRESHING
    assert cache.stats().in_flight_count == 1

    fetcher.gate.set()
    await cache.drain()

    assert fetcher.count("octocat") == 2
    assert cache.stats().stale_served_count == 10
    assert await cache.get("octocat", fetcher) == "octocat-v2"


@pytest.mark.asyncio
async def test_concurrent_cold_gets_share_one_fetch(clock, fetcher):
    cache = SWRCache("member", freshness_window=60, clock=clock)
    fetcher.gate = asyncio.Event()

    pending = asyncio.gather(*(cache.get("octocat", fetcher) for _ in range(5)))
    await asyncio.sleep(0)
    fetcher.gate.set()
    results = await pending

    assert results == ["octocat-v1"] * 5
    assert fetcher.count() == 1


@pytest.mark.asyncio
async def test_background_refresh_failure_keeps_stale_value(clock, fetcher):
    cache = SWRCache("member", freshness_window=60, clock=clock)
    await cache.get("octocat", fetcher)
    clock.advance(61)

    fetcher.fail = True
    assert await cache.get("octocat", fetcher) == "octocat-v1"
    await cache.drain()

    assert cache.stats().refresh_error_count == 1
    assert cache.peek("octocat").value == "octocat-v1"
    assert await cache.get("octocat", fetcher) == "octocat-v1"
    await cache.drain()
    assert cache.stats().refresh_error_count == 2


@pytest.mark.asyncio
async def test_cold_get_failure_propagates(clock, fetcher):
    cache = SWRCache("member", freshness_window=60, clock=clock)
    fetcher.fail = True

    with pytest.raises(UpstreamFetchError) as exc_info:
        await cache.get("octocat", fetcher)

    assert exc_info.value.key == "octocat"
    assert isinstance(exc_info.value.cause, ConnectionError)
    assert cache.peek("octocat") is None


@pytest.mark.asyncio
async def test_fetch_timeout_is_upstream_error(clock, fetcher):
    cache = SWRCache("member", freshness_window=60, fetch_timeout=0.01, clock=clock)
    fetcher.delay = 1.0

    with pytest.raises(UpstreamFetchError):
        await cache.get("slowpoke", fetcher)


@pytest.mark.asyncio
async def test_zero_window_always_refetches(clock, fetcher):
    cache = SWRCache("member", freshness_window=60, clock=clock)

    await cache.get("octocat", fetcher, freshness_window=0)
    value = await cache.get("octocat", fetcher, freshness_window=0)

    assert value == "octocat-v2"
    assert fetcher.count() == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", "   ", None, 42])
async def test_invalid_key_rejected(clock, fetcher, key):
    cache = SWRCache("member", freshness_window=60, clock=clock)

    with pytest.raises(InvalidKeyError):
        await cache.get(key, fetcher)
    assert fetcher.count() == 0


# =============================================================================
# revalidate()
# =============================================================================

@pytest.mark.asyncio
async def test_revalidate_fetches_even_when_fresh(clock, fetcher):
    cache = SWRCache("member", freshness_window=300, clock=clock)
    await cache.get("octocat", fetcher)
    first = cache.peek("octocat").fetched_at

    clock.advance(5)
    value = await cache.revalidate("octocat", fetcher)

    assert value == "octocat-v2"
    assert fetcher.count() == 2
    assert cache.peek("octocat").fetched_at >= first


@pytest.mark.asyncio
async def test_revalidate_replaces_equal_value(clock):
    cache = SWRCache("points", freshness_window=300, clock=clock)

    async def same(key):
        return [1, 2, 3]

    await cache.get("7", same)
    clock.advance(10)
    await cache.revalidate("7", same)

    assert cache.peek("7").fetched_at == clock.now


@pytest.mark.asyncio
async def test_revalidate_failure_keeps_previous_entry(clock, fetcher):
    cache = SWRCache("member", freshness_window=300, clock=clock)
    await cache.get("octocat", fetcher)

    fetcher.fail = True
    with pytest.raises(UpstreamFetchError):
        await cache.revalidate("octocat", fetcher)

    assert cache.peek("octocat").value == "octocat-v1"


@pytest.mark.asyncio
async def test_later_background_refresh_overwrites_revalidate(clock):
    """Last writer wins: a slow background refresh lands after revalidate."""
    cache = SWRCache("member", freshness_window=60, clock=clock)
    gate = asyncio.Event()

    async def initial(key):
        return "initial"

    async def slow_background(key):
        await gate.wait()
        return "from-background"

    async def forced(key):
        return "from-revalidate"

    await cache.get("octocat", initial)
    clock.advance(120)

    assert await cache.get("octocat", slow_background) == "initial"
    await asyncio.sleep(0)
    assert cache.state("octocat") is EntryState.REFRESHING

    assert await cache.revalidate("octocat", forced) == "from-revalidate"
    revalidated_at = cache.peek("octocat").fetched_at

    clock.advance(5)
    gate.set()
    await cache.drain()

    entry = cache.peek("octocat")
    assert entry.value == "from-background"
    assert entry.fetched_at > revalidated_at


# =============================================================================
# Housekeeping and stats
# =============================================================================

@pytest.mark.asyncio
async def test_stats_do_not_mutate(clock, fetcher):
    cache = SWRCache("member", freshness_window=60, clock=clock)
    await cache.get("a", fetcher)

    first = cache.stats()
    second = cache.stats()

    assert first == second
    assert first.entry_count == 1
    assert first.to_dict()["missCount"] == 1


@pytest.mark.asyncio
async def test_prune_and_invalidate(clock, fetcher):
    cache = SWRCache("commits", freshness_window=60, clock=clock)
    await cache.get("old", fetcher)
    clock.advance(90)
    await cache.get("new", fetcher)

    assert cache.prune() == 1
    assert cache.peek("old") is None
    assert cache.invalidate("new") is True
    assert cache.invalidate("new") is False
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_clear_returns_count(clock, fetcher):
    cache = SWRCache("member", freshness_window=60, clock=clock)
    await cache.get("a", fetcher)
    await cache.get("b", fetcher)

    assert cache.clear() == 2
    assert cache.stats().entry_count == 0


# =============================================================================
# RequestCoalescer
# =============================================================================

@pytest.mark.asyncio
async def test_coalescer_propagates_error_to_all_waiters():
    coalescer = RequestCoalescer()
    gate = asyncio.Event()
    calls = []

    async def boom():
        calls.append(1)
        await gate.wait()
        raise ValueError("nope")

    waiters = asyncio.gather(
        coalescer.get_or_fetch("k", boom),
        coalescer.get_or_fetch("k", boom),
        return_exceptions=True,
    )
    await asyncio.sleep(0)
    assert coalescer.active_requests == 1
    gate.set()
    results = await waiters

    assert len(calls) == 1
    assert all(isinstance(r, ValueError) for r in results)
    assert coalescer.get_stats()["active_requests"] == 0
