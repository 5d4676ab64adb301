"""
Stale-while-revalidate cache for one namespace.
"""
import asyncio
import logging
import time
from typing import Dict, Optional, Callable, Any, Awaitable, List

from .core import CacheEntry, CacheStats, EntryState, validate_key
from .coalescer import RequestCoalescer
from .errors import UpstreamFetchError

logger = logging.getLogger("cache.manager")

Fetcher = Callable[[str], Awaitable[Any]]


class SWRCache:
    """
    Keyed cache with:
    - Time-based freshness per entry
    - Request coalescing for concurrent misses and refreshes
    - Stale-while-revalidate background refresh
    - Hit/miss/stale counters

    Everything that touches the entry map runs synchronously on the event
    loop. The only suspension points are upstream fetches.

    Known race: revalidate() does not wait for a background refresh that is
    already running. Whichever fetch completes last writes the entry.
    """

    def __init__(
        self,
        namespace: str,
        freshness_window: float,
        fetch_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            namespace: Name used in logs, stats and errors
            freshness_window: Default seconds an entry counts as fresh
            fetch_timeout: Seconds before an upstream fetch is abandoned
            clock: Returns the current time in seconds
        """
        self.namespace = namespace
        self.freshness_window = freshness_window
        self.fetch_timeout = fetch_timeout
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._coalescer = RequestCoalescer()

        # Stats tracking
        self._stats = {
            "hits": 0,
            "misses": 0,
            "stale_served": 0,
            "refresh_errors": 0,
        }

    async def get(
        self,
        key: str,
        fetcher: Fetcher,
        freshness_window: Optional[float] = None,
    ) -> Any:
        """
        Get a value, fetching only if the key has never been cached.

        Args:
            key: Cache key
            fetcher: Async callable taking the key and returning the value
            freshness_window: Override for this read (seconds)

        Returns:
            The cached or freshly fetched value

        Raises:
            InvalidKeyError: Key is empty or not a string
            UpstreamFetchError: Cold key and the fetch failed
        """
        validate_key(key)
        window = self.freshness_window if freshness_window is None else freshness_window

        if window <= 0:
            return await self.revalidate(key, fetcher, freshness_window=window)

        entry = self._entries.get(key)

        # Cache miss
        if entry is None:
            logger.info(f"CACHE MISS: {self.namespace}:{key}")
            self._stats["misses"] += 1
            return await self._coalescer.get_or_fetch(
                key, lambda: self._fetch_and_store(key, fetcher, window)
            )

        now = self._clock()

        # Cache hit - fresh
        if entry.is_fresh(now, window):
            logger.debug(
                f"CACHE HIT (fresh): {self.namespace}:{key} [age={entry.age(now):.1f}s]"
            )
            self._stats["hits"] += 1
            return entry.value

        # Stale - serve now, refresh in the background
        logger.info(
            f"CACHE HIT (stale, revalidating): {self.namespace}:{key} "
            f"[age={entry.age(now):.1f}s]"
        )
        self._stats["stale_served"] += 1
        self._trigger_background_refresh(key, fetcher, window)
        return entry.value

    async def revalidate(
        self,
        key: str,
        fetcher: Fetcher,
        freshness_window: Optional[float] = None,
    ) -> Any:
        """
        Force one upstream fetch and replace the entry.

        The previous entry stays in place if the fetch fails.

        Raises:
            InvalidKeyError: Key is empty or not a string
            UpstreamFetchError: The fetch failed or timed out
        """
        validate_key(key)
        window = self.freshness_window if freshness_window is None else freshness_window
        logger.info(f"FORCE REFRESH: {self.namespace}:{key}")
        self._stats["misses"] += 1
        return await self._fetch_and_store(key, fetcher, window)

    async def refresh(self, key: str, fetcher: Fetcher) -> Any:
        """
        Fetch and store, joining a fetch already in flight for the key.

        Raises:
            InvalidKeyError: Key is empty or not a string
            UpstreamFetchError: The fetch failed or timed out
        """
        validate_key(key)
        return await self._coalescer.get_or_fetch(
            key, lambda: self._fetch_and_store(key, fetcher, self.freshness_window)
        )

    async def _fetch_and_store(self, key: str, fetcher: Fetcher, window: float) -> Any:
        """Run the fetcher under the timeout and swap in a new entry."""
        try:
            if self.fetch_timeout is not None:
                value = await asyncio.wait_for(fetcher(key), timeout=self.fetch_timeout)
            else:
                value = await fetcher(key)
        except Exception as e:
            logger.warning(f"Fetch failed for {self.namespace}:{key} - {type(e).__name__}: {e}")
            raise UpstreamFetchError(self.namespace, key, e) from e

        self._store(key, value, window)
        return value

    def _store(self, key: str, value: Any, window: float) -> None:
        """Store data in cache."""
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            fetched_at=self._clock(),
            freshness_window=window,
        )

    def _trigger_background_refresh(self, key: str, fetcher: Fetcher, window: float) -> None:
        """Start a refresh without blocking, unless one is already running."""
        task, created = self._coalescer.start(
            key, lambda: self._fetch_and_store(key, fetcher, window)
        )
        if not created:
            logger.debug(f"Already revalidating: {self.namespace}:{key}")
            return
        task.add_done_callback(lambda t: self._on_background_done(key, t))

    def _on_background_done(self, key: str, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.debug(f"Background refresh cancelled: {self.namespace}:{key}")
            return
        error = task.exception()
        if error is not None:
            self._stats["refresh_errors"] += 1
            cause = getattr(error, "cause", None) or error
            logger.warning(
                f"Background refresh failed: {self.namespace}:{key} - {cause!r}; "
                f"keeping stale value"
            )
        else:
            logger.debug(f"Background refresh complete: {self.namespace}:{key}")

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the current entry without counting a hit."""
        return self._entries.get(key)

    def state(self, key: str) -> Optional[EntryState]:
        """FRESH, STALE or REFRESHING for a cached key, None if absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        state = entry.state(self._clock())
        if state is EntryState.STALE and self._coalescer.in_flight(key) is not None:
            return EntryState.REFRESHING
        return state

    def is_fresh(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh(self._clock())

    def record_hit(self) -> None:
        self._stats["hits"] += 1

    def record_miss(self) -> None:
        self._stats["misses"] += 1

    def invalidate(self, key: str) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        if key in self._entries:
            del self._entries[key]
            logger.info(f"Invalidated cache: {self.namespace}:{key}")
            return True
        return False

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared {count} {self.namespace} cache entries")
        return count

    def prune(self, max_age: Optional[float] = None) -> int:
        """
        Drop entries older than max_age (defaults to the freshness window).

        Returns:
            Number of entries removed
        """
        limit = self.freshness_window if max_age is None else max_age
        now = self._clock()
        to_delete: List[str] = [
            k for k, entry in self._entries.items() if entry.age(now) > limit
        ]
        for key in to_delete:
            del self._entries[key]
        if to_delete:
            logger.info(f"Pruned {len(to_delete)} expired {self.namespace} entries")
        return len(to_delete)

    async def drain(self) -> None:
        """Wait for all in-flight fetches to settle."""
        await self._coalescer.drain()

    def stats(self) -> CacheStats:
        """Snapshot of the counters. Does not touch cache state."""
        return CacheStats(
            namespace=self.namespace,
            entry_count=len(self._entries),
            hit_count=self._stats["hits"],
            miss_count=self._stats["misses"],
            stale_served_count=self._stats["stale_served"],
            refresh_error_count=self._stats["refresh_errors"],
            in_flight_count=self._coalescer.active_requests,
        )

    def __len__(self) -> int:
        return len(self._entries)
