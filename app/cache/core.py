"""
Core cache data structures.
"""
from dataclasses import dataclass, field
from typing import Any, Optional
from enum import Enum

from .errors import InvalidKeyError


class EntryState(Enum):
    """Freshness state of a cached entry."""
    FRESH = "fresh"            # Within freshness window
    STALE = "stale"            # Past freshness window, served while revalidating
    REFRESHING = "refreshing"  # Stale with a refresh in flight


class CacheSource(Enum):
    """Where a returned value came from."""
    FRESH = "fresh"       # Cached, within window
    STALE = "stale"       # Cached, past window
    UPSTREAM = "upstream" # Fetched from the upstream API


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached value with the time it was fetched.

    Entries are immutable. A refresh builds a new entry and swaps it in,
    so a reader never observes a half-updated entry.
    """
    key: str
    value: Any
    fetched_at: float
    freshness_window: float

    def age(self, now: float) -> float:
        """Seconds since the value was fetched."""
        return now - self.fetched_at

    def is_fresh(self, now: float, freshness_window: Optional[float] = None) -> bool:
        window = self.freshness_window if freshness_window is None else freshness_window
        return self.age(now) < window

    def state(self, now: float, freshness_window: Optional[float] = None) -> EntryState:
        if self.is_fresh(now, freshness_window):
            return EntryState.FRESH
        return EntryState.STALE


@dataclass
class CacheStats:
    """
    Counters for one namespace. Observability only.
    """
    namespace: str
    entry_count: int = 0
    hit_count: int = 0
    miss_count: int = 0
    stale_served_count: int = 0
    refresh_error_count: int = 0
    in_flight_count: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "namespace": self.namespace,
            "entryCount": self.entry_count,
            "hitCount": self.hit_count,
            "missCount": self.miss_count,
            "staleServedCount": self.stale_served_count,
            "refreshErrorCount": self.refresh_error_count,
            "inFlightCount": self.in_flight_count,
        }


@dataclass
class KeyResult:
    """Outcome for a single key of a batch request."""
    key: str
    value: Any = None
    error: Optional[Exception] = None
    source: CacheSource = field(default=CacheSource.UPSTREAM)

    @property
    def ok(self) -> bool:
        return self.error is None


def validate_key(key: Any) -> str:
    """Reject empty, blank or non-string keys."""
    if not isinstance(key, str) or not key.strip():
        raise InvalidKeyError(key)
    return key
