"""
Notification Schemas

Pydantic models for inbox requests, responses and stored documents.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


# ============================================================
# Enums
# ============================================================

class NotificationType(str, Enum):
    ASSIGNMENT_DUE = "assignment_due"
    ASSIGNMENT_GRADED = "assignment_graded"
    ASSIGNMENT_CREATED = "assignment_created"
    GRADE_POSTED = "grade_posted"
    GRADE_UPDATED = "grade_updated"
    COURSE_UPDATE = "course_update"
    COURSE_ENROLLMENT = "course_enrollment"
    COURSE_DROPPED = "course_dropped"
    SYSTEM_ANNOUNCEMENT = "system_announcement"


# ============================================================
# Request Schemas
# ============================================================

class NotificationCreate(BaseModel):
    """Request to put a notification into a user's inbox."""
    user_id: str = Field(..., description="Owner of the notification")
    type: NotificationType
    title: str = Field(..., description="Short headline")
    message: str = Field(..., description="Notification body")
    data: Dict[str, Any] = Field(default_factory=dict)


# ============================================================
# Response Schemas
# ============================================================

class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    data: Dict[str, Any] = {}
    created_at: datetime
    read: bool = False
    read_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_read_state(self):
        if self.read and self.read_at is None:
            raise ValueError("read notification must carry read_at")
        if not self.read and self.read_at is not None:
            raise ValueError("unread notification must not carry read_at")
        return self


class NotificationPage(BaseModel):
    """One page of the inbox, newest first."""
    notifications: List[NotificationResponse]
    next_cursor: Optional[str] = Field(
        None,
        description="Opaque cursor for the next page, null on the last page"
    )


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkAllReadResponse(BaseModel):
    message: str
    updated: int
