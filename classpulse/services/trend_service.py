"""
Trend Service

Daily submission counts for a batch over the last N calendar days,
today included. Days are cut in the configured TIMEZONE. The series has
exactly N points, oldest first, with zero-count days filled in.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

from classpulse.core.config import settings
from classpulse.repositories.coursework_repo import (
    AssignmentRepository,
    AssignmentSubmissionRepository,
    CourseRepository,
    QuizSubmissionRepository,
)
from classpulse.schemas.analytics import TrendPoint, TrendResponse
from classpulse.services.analytics_service import AnalyticsValidationError
from classpulse.store import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_TREND_DAYS = 30


def bucket_by_day(
    timestamps: Iterable[datetime],
    first_day: date,
    days: int,
    tz: ZoneInfo,
) -> List[TrendPoint]:
    """Count timestamps per calendar day of [first_day, first_day + days)."""
    counts = {first_day + timedelta(days=i): 0 for i in range(days)}
    for ts in timestamps:
        if ts is None:
            continue
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        day = ts.astimezone(tz).date()
        if day in counts:
            counts[day] += 1
    return [TrendPoint(date=d, submission_count=counts[d]) for d in sorted(counts)]


class TrendService:

    def __init__(
        self,
        store: RecordStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        tz_name: Optional[str] = None,
    ):
        self.clock = clock
        self.tz = ZoneInfo(tz_name or settings.TIMEZONE)
        self.course_repo = CourseRepository(store)
        self.assignment_repo = AssignmentRepository(store)
        self.assignment_submission_repo = AssignmentSubmissionRepository(store)
        self.quiz_submission_repo = QuizSubmissionRepository(store)

    async def compute_trend(self, batch_id: str, days: int = DEFAULT_TREND_DAYS) -> TrendResponse:
        if not batch_id or not batch_id.strip():
            raise AnalyticsValidationError("batch_id is required")
        if days < 1 or days > settings.TREND_MAX_DAYS:
            raise AnalyticsValidationError(f"days must be between 1 and {settings.TREND_MAX_DAYS}")

        today = self.clock().astimezone(self.tz).date()
        first_day = today - timedelta(days=days - 1)
        start = datetime.combine(first_day, time.min, tzinfo=self.tz)
        end = datetime.combine(today + timedelta(days=1), time.min, tzinfo=self.tz)

        timestamps: List[datetime] = []

        courses = await self.course_repo.get_by_batch(batch_id)
        course_ids = [c["id"] for c in courses]
        if course_ids:
            assignments = await self.assignment_repo.get_by_courses(course_ids)
            assignment_ids = [a["id"] for a in assignments]
            if assignment_ids:
                submissions = await self.assignment_submission_repo.get_submitted_between(
                    assignment_ids, start, end
                )
                timestamps.extend(
                    s.get("submitted_at") for s in submissions if s.get("status") != "draft"
                )
            quizzes = await self.quiz_submission_repo.get_submitted_between(course_ids, start, end)
            timestamps.extend(q.get("submitted_at") for q in quizzes)

        logger.debug(f"Batch {batch_id}: {len(timestamps)} submissions between {first_day} and {today}")

        return TrendResponse(
            batch_id=batch_id,
            days=days,
            trends=bucket_by_day(timestamps, first_day, days, self.tz),
        )
