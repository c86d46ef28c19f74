"""
Activity Schemas
"""

from typing import Any, Dict

from pydantic import BaseModel, Field


class ActivityCreate(BaseModel):
    activity: str = Field(..., description="Action tag, e.g. 'course_viewed'")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ActivityAccepted(BaseModel):
    status: str = "accepted"
