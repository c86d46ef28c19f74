"""Unit tests for daily submission trends."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from classpulse.services.analytics_service import AnalyticsValidationError
from classpulse.services.trend_service import TrendService, bucket_by_day
from tests.helpers import seed

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return NOW


async def seed_course(store):
    await seed(store, "courses", "c1", batches=["2026"])
    await seed(store, "courses", "c2", batches=["2025"])
    await seed(store, "assignments", "a1", course_id="c1", assignment_type="homework")
    await seed(store, "assignments", "a2", course_id="c2", assignment_type="homework")


class TestComputeTrend:

    @pytest.mark.asyncio
    async def test_thirty_contiguous_days_without_data(self, store):
        trend = await TrendService(store, clock=fixed_clock).compute_trend("2026", 30)

        dates = [p.date for p in trend.trends]
        assert len(dates) == 30
        assert dates[0] == date(2026, 2, 14)
        assert dates[-1] == date(2026, 3, 15)
        assert all(b - a == timedelta(days=1) for a, b in zip(dates, dates[1:]))
        assert all(p.submission_count == 0 for p in trend.trends)

    @pytest.mark.asyncio
    async def test_counts_assignment_and_quiz_submissions(self, store):
        await seed_course(store)
        await seed(store, "assignment_submissions", "s1", assignment_id="a1", student_id="u1",
                   status="submitted", submitted_at=datetime(2026, 3, 15, 1, 0, tzinfo=timezone.utc))
        await seed(store, "assignment_submissions", "s2", assignment_id="a1", student_id="u2",
                   status="graded", submitted_at=datetime(2026, 3, 1, 23, 59, tzinfo=timezone.utc))
        await seed(store, "assignment_submissions", "draft", assignment_id="a1", student_id="u3",
                   status="draft", submitted_at=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc))
        await seed(store, "assignment_submissions", "other", assignment_id="a2", student_id="u4",
                   status="submitted", submitted_at=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc))
        await seed(store, "assignment_submissions", "old", assignment_id="a1", student_id="u5",
                   status="submitted", submitted_at=datetime(2026, 2, 13, 23, 0, tzinfo=timezone.utc))
        await seed(store, "quiz_submissions", "q1", course_id="c1", student_id="u1", score=9,
                   submitted_at=datetime(2026, 3, 15, 11, 0, tzinfo=timezone.utc))

        trend = await TrendService(store, clock=fixed_clock).compute_trend("2026", 30)

        counts = {p.date: p.submission_count for p in trend.trends}
        assert counts[date(2026, 3, 15)] == 2
        assert counts[date(2026, 3, 1)] == 1
        assert sum(counts.values()) == 3

    @pytest.mark.asyncio
    async def test_days_cut_in_configured_timezone(self, store):
        await seed_course(store)
        # 02:00 UTC on the 15th is still the evening of the 14th in New York
        await seed(store, "quiz_submissions", "q1", course_id="c1", student_id="u1",
                   submitted_at=datetime(2026, 3, 15, 2, 0, tzinfo=timezone.utc))

        trend = await TrendService(store, clock=fixed_clock, tz_name="America/New_York").compute_trend("2026", 2)

        assert [(p.date, p.submission_count) for p in trend.trends] == [
            (date(2026, 3, 14), 1),
            (date(2026, 3, 15), 0),
        ]

    @pytest.mark.parametrize("days", [0, -3, 366])
    @pytest.mark.asyncio
    async def test_days_out_of_range(self, store, days):
        with pytest.raises(AnalyticsValidationError):
            await TrendService(store, clock=fixed_clock).compute_trend("2026", days)

    @pytest.mark.asyncio
    async def test_single_day(self, store):
        trend = await TrendService(store, clock=fixed_clock).compute_trend("2026", 1)

        assert [p.date for p in trend.trends] == [date(2026, 3, 15)]


def test_bucket_treats_naive_timestamps_as_utc():
    points = bucket_by_day(
        [datetime(2026, 3, 2, 23, 30), None],
        first_day=date(2026, 3, 2),
        days=2,
        tz=ZoneInfo("Asia/Tokyo"),
    )

    assert [p.submission_count for p in points] == [0, 1]
