"""
Analytics Service

Batch performance analytics derived on demand from raw submission and
quiz records.

Scoring policy:
--------------
For every active student of the batch:

    assignment_submission_rate = submitted / total_assignments * 100   (0 if no assignments)
    average_quiz_score         = mean of per-quiz percentage scores    (0 if no quizzes)
    performance_score          = clamp(0, 100, 0.6 * quiz + 0.4 * submission_rate)

Students are ranked by performance_score descending, student_id ascending.
The top performers are the head of that ranking; the bottom performers
are its tail, listed from the lowest score up. Both lists hold
min(4, total_students) entries and cannot overlap once the batch has at
least 8 students.

Execution:
---------
Record reads are async; the aggregation itself runs in a worker thread
(asyncio.to_thread) so big batches don't stall the event loop that also
dispatches live updates. Snapshots can be cached in Redis for
ANALYTICS_CACHE_TTL_SECONDS (0 disables caching).
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from classpulse.core.config import settings
from classpulse.db.redis import get_redis
from classpulse.repositories.coursework_repo import (
    AssignmentRepository,
    AssignmentSubmissionRepository,
    CourseRepository,
    QuizSubmissionRepository,
    UserRepository,
)
from classpulse.schemas.analytics import (
    BatchAnalyticsSnapshot,
    CodingProfileSummary,
    StudentMetric,
)
from classpulse.store import RecordStore

logger = logging.getLogger(__name__)

QUIZ_WEIGHT = 0.6
SUBMISSION_WEIGHT = 0.4
PERFORMER_COUNT = 4
DEFAULT_MAX_POINTS = 100.0

# Submission states that count as "handed in"
SUBMITTED_STATUSES = {"submitted", "graded", "returned"}

CACHE_KEY_PREFIX = "analytics:batch:"


class AnalyticsServiceError(Exception):
    pass


class AnalyticsValidationError(AnalyticsServiceError):
    pass


# ============================================================
# SCORING
# ============================================================

def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def performance_score(average_quiz_score: float, assignment_submission_rate: float) -> float:
    return clamp(
        QUIZ_WEIGHT * average_quiz_score
        + SUBMISSION_WEIGHT * assignment_submission_rate
    )


def _percentage(points: Any, max_points: Any) -> Optional[float]:
    if points is None:
        return None
    try:
        maximum = float(max_points) if max_points else DEFAULT_MAX_POINTS
        return clamp(float(points) / maximum * 100.0)
    except (TypeError, ValueError):
        return None


def _is_quiz(assignment: Dict[str, Any]) -> bool:
    return assignment.get("assignment_type") == "quiz"


# ============================================================
# AGGREGATION (pure, runs off the event loop)
# ============================================================

def rank_key(metric: Dict[str, Any]) -> Tuple[float, str]:
    return (-metric["performance_score"], str(metric["student_id"]))


def build_student_metrics(
    students: Sequence[Dict[str, Any]],
    assignments: Sequence[Dict[str, Any]],
    assignment_submissions: Sequence[Dict[str, Any]],
    quiz_submissions: Sequence[Dict[str, Any]],
) -> List[StudentMetric]:
    """Per-student metrics, in ranking order."""
    assignments_by_id = {a["id"]: a for a in assignments}
    total_assignments = sum(1 for a in assignments if not _is_quiz(a))

    submitted: Dict[str, set] = defaultdict(set)
    quiz_scores: Dict[str, List[float]] = defaultdict(list)

    for sub in assignment_submissions:
        assignment = assignments_by_id.get(sub.get("assignment_id"))
        if assignment is None:
            continue
        student_id = sub.get("student_id")
        if _is_quiz(assignment):
            pct = _percentage(sub.get("grade_points"), assignment.get("max_points"))
            if pct is not None:
                quiz_scores[student_id].append(pct)
        elif sub.get("status") in SUBMITTED_STATUSES:
            submitted[student_id].add(assignment["id"])

    for sub in quiz_submissions:
        points = sub.get("grade_points")
        if points is None:
            points = sub.get("score")
        pct = _percentage(points, sub.get("max_score"))
        if pct is not None:
            quiz_scores[sub.get("student_id")].append(pct)

    rows = []
    for student in students:
        sid = student["id"]
        scores = quiz_scores.get(sid, [])
        average_quiz = sum(scores) / len(scores) if scores else 0.0
        submitted_count = len(submitted.get(sid, ()))
        rate = submitted_count / total_assignments * 100.0 if total_assignments else 0.0

        rows.append({
            "student_id": sid,
            "first_name": student.get("first_name") or "",
            "last_name": student.get("last_name") or "",
            "email": student.get("email") or "",
            "average_quiz_score": average_quiz,
            "assignment_submission_rate": rate,
            "submitted_assignments": submitted_count,
            "total_assignments": total_assignments,
            "total_quiz_submissions": len(scores),
            "performance_score": performance_score(average_quiz, rate),
        })

    rows.sort(key=rank_key)
    return [StudentMetric(rank=i + 1, **row) for i, row in enumerate(rows)]


def select_performers(ranked: Sequence[StudentMetric]) -> Tuple[List[StudentMetric], List[StudentMetric]]:
    """
    Top and bottom performers from a ranked list.

    Bottom performers are the last entries of the ranking, re-ordered by
    score ascending with ties by student_id ascending.
    """
    count = min(PERFORMER_COUNT, len(ranked))
    top = list(ranked[:count])
    tail = list(ranked[len(ranked) - count:]) if count else []
    bottom = sorted(tail, key=lambda m: (m.performance_score, m.student_id))
    return top, bottom


def summarize_coding_profiles(students: Sequence[Dict[str, Any]]) -> CodingProfileSummary:
    solved: List[float] = []
    ratings: List[float] = []
    profiles = 0

    for student in students:
        for profile in (student.get("coding_profiles") or {}).values():
            if not isinstance(profile, dict):
                continue
            counted = False
            if isinstance(profile.get("problems_solved"), (int, float)):
                solved.append(float(profile["problems_solved"]))
                counted = True
            if isinstance(profile.get("rating"), (int, float)):
                ratings.append(float(profile["rating"]))
                counted = True
            profiles += counted

    return CodingProfileSummary(
        average_problems_solved=sum(solved) / len(solved) if solved else 0.0,
        average_rating=sum(ratings) / len(ratings) if ratings else 0.0,
        profile_count=profiles,
    )


def build_batch_snapshot(
    batch_id: str,
    students: Sequence[Dict[str, Any]],
    assignments: Sequence[Dict[str, Any]],
    assignment_submissions: Sequence[Dict[str, Any]],
    quiz_submissions: Sequence[Dict[str, Any]],
    generated_at: Optional[datetime] = None,
) -> BatchAnalyticsSnapshot:
    metrics = build_student_metrics(students, assignments, assignment_submissions, quiz_submissions)
    top, bottom = select_performers(metrics)

    total = len(metrics)
    average_quiz = sum(m.average_quiz_score for m in metrics) / total if total else 0.0
    average_rate = sum(m.assignment_submission_rate for m in metrics) / total if total else 0.0

    return BatchAnalyticsSnapshot(
        batch_id=batch_id,
        total_students=total,
        average_quiz_score=average_quiz,
        average_assignment_submission_rate=average_rate,
        coding_profile_summary=summarize_coding_profiles(students),
        top_performers=top,
        bottom_performers=bottom,
        student_metrics=metrics,
        generated_at=generated_at or datetime.now(timezone.utc),
    )


# ============================================================
# SERVICE
# ============================================================

class AnalyticsService:
    """Computes batch analytics snapshots from coursework records."""

    def __init__(
        self,
        store: RecordStore,
        cache_ttl: Optional[int] = None,
        redis_factory: Callable = get_redis,
    ):
        self.store = store
        self.cache_ttl = settings.ANALYTICS_CACHE_TTL_SECONDS if cache_ttl is None else cache_ttl
        self.redis_factory = redis_factory
        self.user_repo = UserRepository(store)
        self.course_repo = CourseRepository(store)
        self.assignment_repo = AssignmentRepository(store)
        self.assignment_submission_repo = AssignmentSubmissionRepository(store)
        self.quiz_submission_repo = QuizSubmissionRepository(store)

    async def compute_batch_analytics(self, batch_id: str, use_cache: bool = True) -> BatchAnalyticsSnapshot:
        """
        Analytics snapshot for one batch.

        Store errors propagate unchanged; a failed call can simply be
        repeated by the caller.
        """
        if not batch_id or not batch_id.strip():
            raise AnalyticsValidationError("batch_id is required")

        if self.cache_ttl and use_cache:
            cached = await self._cache_get(batch_id)
            if cached is not None:
                return cached

        snapshot = await self._compute(batch_id)

        if self.cache_ttl:
            await self._cache_set(snapshot)
        return snapshot

    async def refresh(self, batch_id: str) -> BatchAnalyticsSnapshot:
        """Recompute a snapshot, replacing any cached copy."""
        return await self.compute_batch_analytics(batch_id, use_cache=False)

    async def _compute(self, batch_id: str) -> BatchAnalyticsSnapshot:
        students = await self.user_repo.get_active_students(batch_id)

        assignments: List[Dict[str, Any]] = []
        assignment_submissions: List[Dict[str, Any]] = []
        quiz_submissions: List[Dict[str, Any]] = []

        if students:
            courses = await self.course_repo.get_by_batch(batch_id)
            course_ids = [c["id"] for c in courses]
            if course_ids:
                assignments = await self.assignment_repo.get_by_courses(course_ids)
                quiz_submissions = await self.quiz_submission_repo.get_by_courses(course_ids)
            if assignments:
                assignment_submissions = await self.assignment_submission_repo.get_by_assignments(
                    [a["id"] for a in assignments]
                )

        logger.info(
            f"Batch {batch_id}: {len(students)} students, {len(assignments)} assignments, "
            f"{len(assignment_submissions)} assignment submissions, {len(quiz_submissions)} quiz submissions"
        )

        return await asyncio.to_thread(
            build_batch_snapshot,
            batch_id,
            students,
            assignments,
            assignment_submissions,
            quiz_submissions,
        )

    # ============================================================
    # CACHE
    # ============================================================

    async def _cache_get(self, batch_id: str) -> Optional[BatchAnalyticsSnapshot]:
        try:
            redis = await self.redis_factory()
            raw = await redis.get(CACHE_KEY_PREFIX + batch_id)
            if raw is None:
                return None
            return BatchAnalyticsSnapshot.model_validate_json(raw)
        except Exception as e:
            logger.warning(f"Analytics cache read failed for batch {batch_id}: {e}")
            return None

    async def _cache_set(self, snapshot: BatchAnalyticsSnapshot) -> None:
        try:
            redis = await self.redis_factory()
            await redis.set(
                CACHE_KEY_PREFIX + snapshot.batch_id,
                snapshot.model_dump_json(),
                ex=self.cache_ttl,
            )
        except Exception as e:
            logger.warning(f"Analytics cache write failed for batch {snapshot.batch_id}: {e}")
