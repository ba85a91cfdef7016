# tests/conftest.py
from __future__ import annotations

import asyncio

import pytest

from wikimcp.core.config import AppConfig, FetchConfig


class FakeClock:
    """Manual clock whose sleep advances time instead of blocking.

    now         current time in seconds
    sleeps      every duration passed to sleep(), in call order
    """

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # let other tasks run, as a real sleep would
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_config() -> AppConfig:
    """Config with throttling disabled so only backoff sleeps are recorded."""
    return AppConfig(fetch=FetchConfig(throttle_ms=0))
