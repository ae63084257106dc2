"""Pydantic payload models for the HTTP API."""

from datetime import date

from pydantic import BaseModel, Field

from tutor_sessions.domain.sessions import SessionType
from tutor_sessions.domain.statuses import SessionStatus

_CLOCK_TIME = r"^([01]\d|2[0-3]):[0-5]\d$"


class SessionRequestCreate(BaseModel):
    student_name: str
    tutor_id: str
    tutor_name: str
    subject: str
    proposed_date: date
    start_time: str = Field(pattern=_CLOCK_TIME)
    end_time: str = Field(pattern=_CLOCK_TIME)
    duration_hours: float
    session_type: SessionType = SessionType.ONLINE
    hourly_rate: float
    description: str | None = None


class RequestDecision(BaseModel):
    status: SessionStatus
    reason: str | None = None


class StatusChange(BaseModel):
    status: SessionStatus
    reason: str | None = None


class RatingSubmission(BaseModel):
    rating: int
    review: str | None = None


class ChatMessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=1000)
    message_type: str = "text"
