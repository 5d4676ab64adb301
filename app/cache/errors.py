"""
Cache error taxonomy.
"""
from typing import Any, Optional


class CacheError(Exception):
    """Base class for cache errors."""


class UpstreamFetchError(CacheError):
    """The fetcher failed or timed out."""

    def __init__(self, namespace: str, key: str, cause: Optional[BaseException] = None):
        self.namespace = namespace
        self.key = key
        self.cause = cause
        reason = f"{type(cause).__name__}: {cause}" if cause is not None else "unknown error"
        super().__init__(f"Upstream fetch failed for {namespace}:{key} ({reason})")


class TooManyKeysError(CacheError):
    """A batch request asked for more keys than allowed."""

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(f"Too many keys: {count} requested, max {limit}")


class InvalidKeyError(CacheError):
    """Empty or malformed cache key."""

    def __init__(self, key: Any):
        self.key = key
        super().__init__(f"Invalid cache key: {key!r}")


class UnknownNamespaceError(CacheError):
    """No cache is registered under this namespace."""

    def __init__(self, namespace: str):
        self.namespace = namespace
        super().__init__(f"Unknown cache namespace: {namespace}")
