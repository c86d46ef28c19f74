"""
Coursework Repository

Read-only access to the collections owned by the course / assignment /
submission CRUD layer. Analytics and trends only ever read these.

Collections:
- users                   role, batch, is_active, names, coding_profiles
- courses                 batches: [batch_id, ...]
- assignments             course_id, assignment_type, max_points
- assignment_submissions  assignment_id, student_id, status, submitted_at, grade_points
- quiz_submissions        course_id, student_id, score, max_score, grade_points, submitted_at
"""

from datetime import datetime
from typing import Any, Dict, List, Sequence

from classpulse.repositories.base import BaseRepository
from classpulse.store import FieldFilter


class UserRepository(BaseRepository):
    collection = "users"

    async def get_active_students(self, batch_id: str) -> List[Dict[str, Any]]:
        return await self.find(
            FieldFilter("role", "==", "student"),
            FieldFilter("batch", "==", batch_id),
            FieldFilter("is_active", "==", True),
        )


class CourseRepository(BaseRepository):
    collection = "courses"

    async def get_by_batch(self, batch_id: str) -> List[Dict[str, Any]]:
        return await self.find(FieldFilter("batches", "array_contains", batch_id))


class AssignmentRepository(BaseRepository):
    collection = "assignments"

    async def get_by_courses(self, course_ids: Sequence[str]) -> List[Dict[str, Any]]:
        return await self.find_in("course_id", course_ids)


class AssignmentSubmissionRepository(BaseRepository):
    collection = "assignment_submissions"

    async def get_by_assignments(self, assignment_ids: Sequence[str]) -> List[Dict[str, Any]]:
        return await self.find_in("assignment_id", assignment_ids)

    async def get_submitted_between(
        self,
        assignment_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> List[Dict[str, Any]]:
        return await self.find_in(
            "assignment_id",
            assignment_ids,
            FieldFilter("submitted_at", ">=", start),
            FieldFilter("submitted_at", "<", end),
        )


class QuizSubmissionRepository(BaseRepository):
    collection = "quiz_submissions"

    async def get_by_courses(self, course_ids: Sequence[str]) -> List[Dict[str, Any]]:
        return await self.find_in("course_id", course_ids)

    async def get_submitted_between(
        self,
        course_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> List[Dict[str, Any]]:
        return await self.find_in(
            "course_id",
            course_ids,
            FieldFilter("submitted_at", ">=", start),
            FieldFilter("submitted_at", "<", end),
        )
