import asyncio
from datetime import datetime, timedelta

import pytest

from db.visit_log import MemoryVisitLog
from models.visit import DeviceType, VisitRecord

BASE_TIME = datetime(2026, 10, 1, 12, 0, 0)


class FakeClock:
    """Manually advanced clock for the in-memory log."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def make_visit(path="/", **kwargs) -> VisitRecord:
    """VisitRecord with sensible defaults for aggregation tests."""
    kwargs.setdefault("timestamp", BASE_TIME)
    if isinstance(kwargs.get("device"), str):
        kwargs["device"] = DeviceType(kwargs["device"])
    return VisitRecord(path=path, **kwargs)


async def settle(turns: int = 5):
    """Let callbacks scheduled with call_soon run."""
    for _ in range(turns):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_log(clock):
    return MemoryVisitLog(clock=clock)
