"""Pytest configuration and shared fixtures.

All tests run against the in-memory record store; nothing here talks to
Firebase or Redis.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("RECORD_STORE_BACKEND", "memory")
os.environ.setdefault("PUSH_NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("ANALYTICS_CACHE_TTL_SECONDS", "0")
os.environ.setdefault("TIMEZONE", "UTC")

from classpulse.core.security import ROLE_INSTRUCTOR, Session  # noqa: E402
from classpulse.store import MemoryRecordStore, reset_record_store, set_record_store  # noqa: E402
from tests.helpers import StepClock  # noqa: E402

START = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock() -> StepClock:
    return StepClock(START)


@pytest.fixture
def frozen_clock() -> StepClock:
    """Clock that never advances, for timestamp collisions."""
    return StepClock(START, step=timedelta(0))


# =============================================================================
# Store & sessions
# =============================================================================


@pytest.fixture
def store():
    """Fresh in-memory store, also installed as the process-wide store."""
    memory = MemoryRecordStore()
    set_record_store(memory)
    yield memory
    reset_record_store()


@pytest.fixture
def student() -> Session:
    return Session(user_id="student-1", email="ada@example.edu")


@pytest.fixture
def other_student() -> Session:
    return Session(user_id="student-2", email="alan@example.edu")


@pytest.fixture
def instructor() -> Session:
    return Session(user_id="instructor-1", role=ROLE_INSTRUCTOR)
