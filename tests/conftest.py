"""Shared test fixtures for Cadence."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from cadence.core.config import CadenceConfig
from cadence.scheduler.engine import Scheduler


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# Anchor on a whole second: rrule drops microseconds from start dates
ANCHOR = datetime(2030, 1, 1, 0, 0, 0)


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return CadenceConfig()


@pytest.fixture
def clock():
    """Fake clock sitting 50ms before ANCHOR."""
    return FakeClock(ANCHOR - timedelta(milliseconds=50))


@pytest_asyncio.fixture
async def scheduler(clock):
    """Scheduler with a one-minute window on the fake clock."""
    s = Scheduler(interval=60000, clock=clock)
    yield s
    await s.stop()
