"""
Analytics Schemas

Derived, never-persisted views over submission and quiz records.
"""

from datetime import date, datetime
from typing import List

from pydantic import BaseModel, Field


class StudentMetric(BaseModel):
    student_id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    average_quiz_score: float = Field(ge=0.0, le=100.0)
    assignment_submission_rate: float = Field(ge=0.0, le=100.0)
    submitted_assignments: int
    total_assignments: int
    total_quiz_submissions: int = 0
    performance_score: float = Field(ge=0.0, le=100.0)
    rank: int = Field(ge=1, description="1-based position in the batch ranking")


class CodingProfileSummary(BaseModel):
    average_problems_solved: float = 0.0
    average_rating: float = 0.0
    profile_count: int = 0


class BatchAnalyticsSnapshot(BaseModel):
    batch_id: str
    total_students: int
    average_quiz_score: float
    average_assignment_submission_rate: float
    coding_profile_summary: CodingProfileSummary
    top_performers: List[StudentMetric]
    bottom_performers: List[StudentMetric]
    student_metrics: List[StudentMetric]
    generated_at: datetime


class TrendPoint(BaseModel):
    date: date
    submission_count: int = Field(ge=0)


class TrendResponse(BaseModel):
    batch_id: str
    days: int
    trends: List[TrendPoint]


class RefreshJobResponse(BaseModel):
    job_id: str
    batch_id: str
