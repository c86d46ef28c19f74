"""
Realtime Update Schemas

Pydantic models for the realtime-update feed and live subscriptions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Union

from pydantic import BaseModel, Field

from classpulse.schemas.notification import NotificationResponse


class RealtimeUpdateType(str, Enum):
    ASSIGNMENT_CREATED = "assignment_created"
    ASSIGNMENT_UPDATED = "assignment_updated"
    ASSIGNMENT_DELETED = "assignment_deleted"
    SUBMISSION_CREATED = "submission_created"
    SUBMISSION_GRADED = "submission_graded"
    GRADE_UPDATED = "grade_updated"
    COURSE_ENROLLMENT = "course_enrollment"
    COURSE_DROPPED = "course_dropped"


class ResourceKind(str, Enum):
    """Collections a live subscription can watch."""
    NOTIFICATIONS = "notifications"
    REALTIME_UPDATES = "realtime_updates"


class RealtimeUpdateCreate(BaseModel):
    """A system event addressed to one user."""
    user_id: str
    type: RealtimeUpdateType
    payload: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RealtimeUpdateResponse(BaseModel):
    id: str
    user_id: str
    type: RealtimeUpdateType
    payload: Dict[str, Any] = {}
    metadata: Dict[str, Any] = {}
    timestamp: datetime
    read: bool = False


class RealtimeUpdateListResponse(BaseModel):
    updates: List[RealtimeUpdateResponse]


class LiveSnapshot(BaseModel):
    """Full ordered window pushed to a live subscriber."""
    type: str = "snapshot"
    resource: ResourceKind
    items: List[Union[NotificationResponse, RealtimeUpdateResponse]]


class PurgeResult(BaseModel):
    realtime_updates: int
    notifications: int
