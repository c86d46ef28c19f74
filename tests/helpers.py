"""Test helpers shared across unit and integration tests."""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Dict

from classpulse.store import MemoryRecordStore


class StepClock:
    """Deterministic clock: every call advances by `step`."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


async def settle(seconds: float = 0.05) -> None:
    """Give background dispatch tasks time to run."""
    await asyncio.sleep(seconds)


async def seed(store: MemoryRecordStore, collection: str, record_id: str, **fields: Any) -> Dict[str, Any]:
    return await store.add(collection, fields, record_id=record_id)
