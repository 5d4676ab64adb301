"""
Namespace policies and the registry that owns one cache per namespace.
"""
import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional, Callable, Any, Iterable, List

from config.settings import Settings

from .batch import BatchFetcher
from .core import KeyResult
from .errors import UnknownNamespaceError
from .manager import Fetcher, SWRCache

logger = logging.getLogger("cache.namespaces")

MEMBER = "member"
POINTS = "points"
COMMITS = "commits"


@dataclass(frozen=True)
class NamespacePolicy:
    """Freshness and fan-out limits for one namespace."""
    name: str
    freshness_window: float
    concurrency_limit: int = 5
    max_batch_keys: int = 50
    fetch_timeout: Optional[float] = 10.0


# Defaults in seconds
DEFAULT_POLICIES: Dict[str, NamespacePolicy] = {
    MEMBER: NamespacePolicy(MEMBER, freshness_window=60),        # 1 minute
    POINTS: NamespacePolicy(POINTS, freshness_window=30),        # 30 seconds
    COMMITS: NamespacePolicy(COMMITS, freshness_window=10800),   # 3 hours
}


def policies_from_settings(settings: Settings) -> List[NamespacePolicy]:
    """Build namespace policies from application settings."""
    windows = {
        MEMBER: settings.member_cache_ttl,
        POINTS: settings.points_cache_ttl,
        COMMITS: settings.commits_cache_ttl,
    }
    return [
        NamespacePolicy(
            name=name,
            freshness_window=window,
            concurrency_limit=settings.batch_concurrency_limit,
            max_batch_keys=settings.batch_max_keys,
            fetch_timeout=settings.fetch_timeout_seconds,
        )
        for name, window in windows.items()
    ]


class CacheRegistry:
    """
    One SWRCache and one BatchFetcher per namespace.

    Build one at startup and pass it to whatever needs it. Tests build
    their own so caches never leak between them.
    """

    def __init__(
        self,
        policies: Optional[Iterable[NamespacePolicy]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._caches: Dict[str, SWRCache] = {}
        self._batchers: Dict[str, BatchFetcher] = {}
        for policy in (policies if policies is not None else DEFAULT_POLICIES.values()):
            cache = SWRCache(
                namespace=policy.name,
                freshness_window=policy.freshness_window,
                fetch_timeout=policy.fetch_timeout,
                clock=clock,
            )
            self._caches[policy.name] = cache
            self._batchers[policy.name] = BatchFetcher(
                cache,
                concurrency_limit=policy.concurrency_limit,
                max_keys=policy.max_batch_keys,
            )
            logger.debug(
                f"Registered namespace {policy.name} "
                f"[window={policy.freshness_window}s, limit={policy.concurrency_limit}]"
            )

    @classmethod
    def from_settings(cls, settings: Settings, clock: Callable[[], float] = time.time) -> "CacheRegistry":
        return cls(policies_from_settings(settings), clock=clock)

    @property
    def namespaces(self) -> List[str]:
        return list(self._caches.keys())

    def cache(self, namespace: str) -> SWRCache:
        try:
            return self._caches[namespace]
        except KeyError:
            raise UnknownNamespaceError(namespace) from None

    def batcher(self, namespace: str) -> BatchFetcher:
        try:
            return self._batchers[namespace]
        except KeyError:
            raise UnknownNamespaceError(namespace) from None

    async def get(
        self,
        namespace: str,
        key: str,
        fetcher: Fetcher,
        freshness_window: Optional[float] = None,
    ) -> Any:
        return await self.cache(namespace).get(key, fetcher, freshness_window)

    async def revalidate(self, namespace: str, key: str, fetcher: Fetcher) -> Any:
        return await self.cache(namespace).revalidate(key, fetcher)

    async def batch_get(
        self,
        namespace: str,
        keys: Iterable[str],
        fetcher: Fetcher,
        force: bool = False,
    ) -> Dict[str, KeyResult]:
        return await self.batcher(namespace).batch_get(keys, fetcher, force=force)

    def stats(self, namespace: Optional[str] = None) -> Dict[str, Any]:
        """
        Counters for one namespace, or every namespace plus totals.
        """
        if namespace is not None:
            return self.cache(namespace).stats().to_dict()

        per_namespace = {name: cache.stats() for name, cache in self._caches.items()}
        totals = {
            "entryCount": sum(s.entry_count for s in per_namespace.values()),
            "hitCount": sum(s.hit_count for s in per_namespace.values()),
            "missCount": sum(s.miss_count for s in per_namespace.values()),
            "staleServedCount": sum(s.stale_served_count for s in per_namespace.values()),
            "refreshErrorCount": sum(s.refresh_error_count for s in per_namespace.values()),
        }
        return {
            "namespaces": {name: s.to_dict() for name, s in per_namespace.items()},
            "totals": totals,
        }

    def prune(self) -> int:
        """Drop expired entries in every namespace."""
        return sum(cache.prune() for cache in self._caches.values())

    async def drain(self) -> None:
        """Wait for in-flight fetches in every namespace."""
        for cache in self._caches.values():
            await cache.drain()
