import asyncio
from typing import Optional

import pytest


class FakeClock:
    """Manually advanced clock for freshness tests."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingFetcher:
    """
    Async fetcher that records calls.

    Returns "<key>-v<n>" where n is the call number for that key. Set `gate`
    to hold fetches until the event is set, or `fail` to raise.
    """

    def __init__(self):
        self.calls = []
        self.gate: Optional[asyncio.Event] = None
        self.fail = False
        self.delay = 0.0

    def count(self, key: Optional[str] = None) -> int:
        if key is None:
            return len(self.calls)
        return self.calls.count(key)

    async def __call__(self, key: str):
        self.calls.append(key)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"upstream down for {key}")
        return f"{key}-v{self.calls.count(key)}"


@pytest.fixture
def clock():
    return FakeClock(start=1_000.0)


@pytest.fixture
def fetcher():
    return CountingFetcher()
