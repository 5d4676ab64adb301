"""
Batched fetches with a concurrency cap and per-key failure isolation.
"""
import asyncio
import logging
from typing import Dict, Iterable, List

from .core import CacheSource, KeyResult, validate_key
from .errors import TooManyKeysError, UpstreamFetchError
from .manager import Fetcher, SWRCache

logger = logging.getLogger("cache.batch")


class BatchFetcher:
    """
    Resolves many keys of one namespace at once.

    - Fresh keys come straight from the cache
    - Missing and stale keys are fetched, at most `concurrency_limit` at a time
    - A failed key is reported on its own; the others carry on
    """

    def __init__(self, cache: SWRCache, concurrency_limit: int = 5, max_keys: int = 50):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.cache = cache
        self.concurrency_limit = concurrency_limit
        self.max_keys = max_keys
        # One semaphore per namespace: the cap spans overlapping batches
        self._semaphore = asyncio.Semaphore(concurrency_limit)

    async def batch_get(
        self,
        keys: Iterable[str],
        fetcher: Fetcher,
        force: bool = False,
    ) -> Dict[str, KeyResult]:
        """
        Get every key, fetching only what is missing or stale.

        Args:
            keys: Keys to resolve; duplicates are processed once
            fetcher: Async callable taking a key and returning its value
            force: Fetch every key, including fresh ones

        Returns:
            Mapping with one KeyResult per distinct key, in first-seen order

        Raises:
            InvalidKeyError: Any key is empty or not a string
            TooManyKeysError: More distinct keys than max_keys
        """
        unique: List[str] = list(dict.fromkeys(validate_key(k) for k in keys))
        if len(unique) > self.max_keys:
            raise TooManyKeysError(len(unique), self.max_keys)

        results: Dict[str, KeyResult] = {key: KeyResult(key=key) for key in unique}
        to_fetch: List[str] = []

        for key in unique:
            entry = self.cache.peek(key)
            if not force and entry is not None and self.cache.is_fresh(key):
                self.cache.record_hit()
                results[key] = KeyResult(key=key, value=entry.value, source=CacheSource.FRESH)
            else:
                to_fetch.append(key)

        if to_fetch:
            logger.info(
                f"Batch {self.cache.namespace}: {len(unique) - len(to_fetch)} fresh, "
                f"fetching {len(to_fetch)} (limit={self.concurrency_limit})"
            )
            for _ in to_fetch:
                self.cache.record_miss()
            fetched = await asyncio.gather(
                *(self._fetch_one(key, fetcher) for key in to_fetch)
            )
            for result in fetched:
                results[result.key] = result

        return results

    async def _fetch_one(
        self,
        key: str,
        fetcher: Fetcher,
    ) -> KeyResult:
        async with self._semaphore:
            try:
                value = await self.cache.refresh(key, fetcher)
            except UpstreamFetchError as e:
                logger.warning(f"Batch fetch failed for {self.cache.namespace}:{key}")
                return KeyResult(key=key, error=e)
        return KeyResult(key=key, value=value, source=CacheSource.UPSTREAM)
