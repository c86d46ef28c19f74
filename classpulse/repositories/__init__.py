from classpulse.repositories.base import BaseRepository
from classpulse.repositories.notification_repo import (
    NotificationRepository,
    RealtimeUpdateRepository,
)
from classpulse.repositories.activity_repo import ActivityRepository
from classpulse.repositories.coursework_repo import (
    UserRepository,
    CourseRepository,
    AssignmentRepository,
    AssignmentSubmissionRepository,
    QuizSubmissionRepository,
)

__all__ = [
    "BaseRepository",
    "NotificationRepository",
    "RealtimeUpdateRepository",
    "ActivityRepository",
    "UserRepository",
    "CourseRepository",
    "AssignmentRepository",
    "AssignmentSubmissionRepository",
    "QuizSubmissionRepository",
]
