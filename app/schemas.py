# app/schemas.py

from pydantic import BaseModel, Field, field_validator
from typing import Dict, List, Optional
from datetime import date, datetime
from app.models import SessionStatus
from app.tags import normalize_tags


class PostureEvent(BaseModel):
    """One analysis tick from the posture classifier"""

    user_id: int
    session_id: int
    tags: List[str] = Field(..., min_length=1)  # simultaneous posture states, in classifier order
    timestamp: datetime

    @field_validator("tags")
    @classmethod
    def tags_not_blank(cls, value: List[str]) -> List[str]:
        tags = normalize_tags(value)
        if not tags:
            raise ValueError("at least one non-blank tag is required")
        return tags

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_local(cls, value: datetime) -> datetime:
        # Stored naive; day windows and retention use server-local time
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    class Config:
        extra = "ignore"  # Ignore unexpected fields


class IngestResponse(BaseModel):
    status: str
    accepted: bool


class SessionControlRequest(BaseModel):
    session_id: int


class SessionStartResponse(BaseModel):
    session_id: int
    start_at: datetime


class SessionStateResponse(BaseModel):
    session_id: int
    status: SessionStatus
    accumulated_seconds: int
    end_at: Optional[datetime] = None


class FeedbackResponse(BaseModel):
    """Live coaching state; a neutral placeholder until data arrives"""
    tags: List[str]
    messages: List[str]
    timestamp: datetime
    ratio: float
    warning_total: int
    issue_counts: Dict[str, int] = {}


class Recommendation(BaseModel):
    issue_tag: str
    guide_id: int
    title: str


class CalendarAchievement(BaseModel):
    day: date
    ratio: float
    achieved: bool


class WeeklyReport(BaseModel):
    # Rolling 7 days (trend graph)
    dates: List[date]
    correct_ratios: List[float]
    warning_counts: List[int]

    # Latest day
    current_ratio: float
    current_total_warning: int
    current_consecutive_days: int
    most_frequent_issue: str

    # Calendar week so far vs previous week
    weekly_avg_ratio: float
    weekly_total_warning: int
    ratio_change_vs_previous_week: float

    posture_distribution: Dict[str, int]
    recommendations: List[Recommendation]
    monthly_achievements: List[CalendarAchievement]
