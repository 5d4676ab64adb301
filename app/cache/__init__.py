"""
Stale-while-revalidate caching with request coalescing and batched fetches.
"""
from .core import CacheEntry, CacheSource, CacheStats, EntryState, KeyResult
from .errors import (
    CacheError,
    InvalidKeyError,
    TooManyKeysError,
    UnknownNamespaceError,
    UpstreamFetchError,
)
from .coalescer import RequestCoalescer
from .manager import SWRCache
from .batch import BatchFetcher
from .namespaces import (
    COMMITS,
    DEFAULT_POLICIES,
    MEMBER,
    POINTS,
    CacheRegistry,
    NamespacePolicy,
)

__all__ = [
    # Core types
    "CacheEntry",
    "CacheSource",
    "CacheStats",
    "EntryState",
    "KeyResult",
    # Errors
    "CacheError",
    "InvalidKeyError",
    "TooManyKeysError",
    "UnknownNamespaceError",
    "UpstreamFetchError",
    # Coalescing
    "RequestCoalescer",
    # Cache and batching
    "SWRCache",
    "BatchFetcher",
    # Namespaces
    "COMMITS",
    "DEFAULT_POLICIES",
    "MEMBER",
    "POINTS",
    "CacheRegistry",
    "NamespacePolicy",
]
