"""Domain models for session requests and confirmed sessions."""

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime, time
from enum import StrEnum

from tutor_sessions.domain.errors import PolicyRejection
from tutor_sessions.domain.statuses import SessionStatus

MAX_SUBJECT_LENGTH = 100
MAX_TEXT_LENGTH = 500
MIN_DURATION_HOURS = 0.5
MAX_DURATION_HOURS = 3.0
MIN_HOURLY_RATE = 5.0


class SessionType(StrEnum):
    """How a session is delivered."""

    ONLINE = "online"
    IN_PERSON = "in-person"


@dataclass(frozen=True)
class SessionRequestDraft:
    """Student input for a new booking, before it is persisted."""

    student_id: str
    student_name: str
    tutor_id: str
    tutor_name: str
    subject: str
    proposed_date: date
    start_time: str
    end_time: str
    duration_hours: float
    session_type: SessionType
    hourly_rate: float
    description: str | None = None

    @property
    def total_cost(self) -> float:
        """Price locked at request time."""
        return self.duration_hours * self.hourly_rate

    def starts_at(self) -> datetime:
        """Proposed start as a UTC timestamp."""
        minutes = _minutes(self.start_time)
        return datetime.combine(
            self.proposed_date, time(minutes // 60, minutes % 60), tzinfo=UTC
        )

    def validate(self, now: datetime) -> None:
        """Raise ``PolicyRejection`` if the draft is malformed or in the past."""
        subject = self.subject.strip()
        if not subject:
            raise PolicyRejection("subject_required", "Subject is required")
        if len(subject) > MAX_SUBJECT_LENGTH:
            raise PolicyRejection(
                "subject_too_long", "Subject cannot exceed 100 characters"
            )
        if self.description and len(self.description) > MAX_TEXT_LENGTH:
            raise PolicyRejection(
                "description_too_long", "Description cannot exceed 500 characters"
            )
        if not MIN_DURATION_HOURS <= self.duration_hours <= MAX_DURATION_HOURS:
            raise PolicyRejection(
                "invalid_duration", "Duration must be between 0.5 and 3 hours"
            )
        if self.hourly_rate < MIN_HOURLY_RATE:
            raise PolicyRejection(
                "invalid_rate", "Hourly rate must be at least $5"
            )
        if _minutes(self.start_time) >= _minutes(self.end_time):
            raise PolicyRejection(
                "invalid_time_range", "Start time must be before end time"
            )
        if self.starts_at() <= now:
            raise PolicyRejection("date_in_past", "Session date must be in the future")
        if self.student_id == self.tutor_id:
            raise PolicyRejection(
                "invalid_participants", "Student and tutor must differ"
            )


@dataclass(frozen=True)
class SessionRequest:
    """A student-initiated booking that is not yet confirmed."""

    id: str
    student_id: str
    student_name: str
    tutor_id: str
    tutor_name: str
    subject: str
    proposed_date: date
    start_time: str
    end_time: str
    duration_hours: float
    session_type: SessionType
    hourly_rate: float
    total_cost: float
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    resolved_by: str | None = None
    responded_at: datetime | None = None
    rejection_reason: str | None = None
    cancellation_reason: str | None = None

    def has_participant(self, user_id: str) -> bool:
        return user_id in {self.student_id, self.tutor_id}


@dataclass(frozen=True)
class ConfirmedSession:
    """An approved session, keyed by the id of the request it came from."""

    id: str
    student_id: str
    student_name: str
    tutor_id: str
    tutor_name: str
    subject: str
    session_date: date
    start_time: str
    end_time: str
    duration_hours: float
    session_type: SessionType
    hourly_rate: float
    total_cost: float
    status: SessionStatus
    created_at: datetime
    updated_at: datetime
    meeting_reference: str | None = None
    rating: int | None = None
    review: str | None = None
    rated_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    actual_duration_minutes: int | None = None

    def has_participant(self, user_id: str) -> bool:
        return user_id in {self.student_id, self.tutor_id}

    def counterpart_of(self, user_id: str) -> str:
        """Return the other participant's id."""
        return self.tutor_id if user_id == self.student_id else self.student_id


def new_request(
    draft: SessionRequestDraft, request_id: str, now: datetime
) -> SessionRequest:
    """Build a pending request from a validated draft."""
    return SessionRequest(
        id=request_id,
        student_id=draft.student_id,
        student_name=draft.student_name,
        tutor_id=draft.tutor_id,
        tutor_name=draft.tutor_name,
        subject=draft.subject.strip(),
        proposed_date=draft.proposed_date,
        start_time=draft.start_time,
        end_time=draft.end_time,
        duration_hours=draft.duration_hours,
        session_type=draft.session_type,
        hourly_rate=draft.hourly_rate,
        total_cost=draft.total_cost,
        status=SessionStatus.PENDING,
        created_at=now,
        updated_at=now,
        description=draft.description,
    )


def approve_request(
    request: SessionRequest, actor_id: str, now: datetime
) -> tuple[SessionRequest, ConfirmedSession]:
    """Return the approved request and the session it becomes."""
    approved = replace(
        request,
        status=SessionStatus.APPROVED,
        resolved_by=actor_id,
        responded_at=now,
        updated_at=now,
    )
    session = ConfirmedSession(
        id=request.id,
        student_id=request.student_id,
        student_name=request.student_name,
        tutor_id=request.tutor_id,
        tutor_name=request.tutor_name,
        subject=request.subject,
        session_date=request.proposed_date,
        start_time=request.start_time,
        end_time=request.end_time,
        duration_hours=request.duration_hours,
        session_type=request.session_type,
        hourly_rate=request.hourly_rate,
        total_cost=request.total_cost,
        status=SessionStatus.APPROVED,
        created_at=now,
        updated_at=now,
    )
    return approved, session


def reject_request(
    request: SessionRequest, actor_id: str, reason: str, now: datetime
) -> SessionRequest:
    """Return the rejected request."""
    return replace(
        request,
        status=SessionStatus.REJECTED,
        resolved_by=actor_id,
        responded_at=now,
        updated_at=now,
        rejection_reason=reason.strip(),
    )


def cancel_request(
    request: SessionRequest, actor_id: str, reason: str, now: datetime
) -> SessionRequest:
    """Return the request withdrawn before a decision."""
    return replace(
        request,
        status=SessionStatus.CANCELLED,
        resolved_by=actor_id,
        updated_at=now,
        cancellation_reason=reason.strip(),
    )


def transition_session(
    session: ConfirmedSession,
    status: SessionStatus,
    actor_id: str,
    now: datetime,
    reason: str | None = None,
) -> ConfirmedSession:
    """Apply an already-approved status change and stamp its timestamps."""
    changes: dict[str, object] = {"status": status, "updated_at": now}
    if status is SessionStatus.IN_PROGRESS:
        changes["started_at"] = now
    elif status is SessionStatus.COMPLETED:
        changes["completed_at"] = now
        if session.started_at is not None:
            elapsed = now - session.started_at
            changes["actual_duration_minutes"] = round(elapsed.total_seconds() / 60)
    elif status is SessionStatus.CANCELLED:
        changes["cancelled_at"] = now
        changes["cancelled_by"] = actor_id
        changes["cancellation_reason"] = (reason or "").strip()
    return replace(session, **changes)


def slots_overlap(first: tuple[str, str], second: tuple[str, str]) -> bool:
    """Return whether two same-day ``(start, end)`` slots intersect."""
    first_start, first_end = (_minutes(value) for value in first)
    second_start, second_end = (_minutes(value) for value in second)
    return first_start < second_end and second_start < first_end


def _minutes(value: str) -> int:
    try:
        hours, minutes = (int(part) for part in value.split(":", 1))
    except ValueError as exc:
        raise PolicyRejection(
            "invalid_time", f"Invalid time value: {value!r}"
        ) from exc
    if not (0 <= hours < 24 and 0 <= minutes < 60):  # noqa: PLR2004
        raise PolicyRejection("invalid_time", f"Invalid time value: {value!r}")
    return hours * 60 + minutes
