"""
Request coalescing to prevent duplicate upstream API calls.

When multiple concurrent requests ask for the same data, only one
upstream call is made and all requesters share the result.
"""
import asyncio
import logging
from typing import Dict, Optional, Callable, Any, Awaitable, Tuple

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    Ensures concurrent requests for the same cache key share one upstream call.

    Pattern:
    - First request for a key creates a task for the fetch
    - Subsequent requests for the same key get the same task back
    - When the task completes it removes itself from the registry
    - Registration never awaits, so it is atomic on the event loop

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.get_or_fetch(
            "member:octocat",
            lambda: fetch_member("octocat"),
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, asyncio.Task] = {}

    def start(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Tuple[asyncio.Task, bool]:
        """
        Join the in-flight task for a key, or start one.

        Returns:
            (task, created) where created is True if this call started it
        """
        task = self._in_flight.get(cache_key)
        if task is not None:
            logger.debug(f"Coalescing request for {cache_key}")
            return task, False

        logger.debug(f"Initiating fetch for {cache_key}")
        task = asyncio.ensure_future(fetch_fn())
        self._in_flight[cache_key] = task
        task.add_done_callback(lambda t: self._release(cache_key, t))
        return task, True

    async def get_or_fetch(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight request or initiate a new one.

        The shared task is shielded, so a cancelled waiter does not cancel
        the fetch for everyone else.

        Raises:
            Exception: Any error from fetch_fn is propagated to every waiter
        """
        task, _ = self.start(cache_key, fetch_fn)
        return await asyncio.shield(task)

    def _release(self, cache_key: str, task: asyncio.Task) -> None:
        if self._in_flight.get(cache_key) is task:
            del self._in_flight[cache_key]

    def in_flight(self, cache_key: str) -> Optional[asyncio.Task]:
        """The pending task for a key, if any."""
        return self._in_flight.get(cache_key)

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    async def drain(self) -> None:
        """Wait until every in-flight request has settled."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }
