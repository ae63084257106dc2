"""Row mapping shared by the Supabase and mirror stores."""

from dataclasses import fields
from datetime import date, datetime

from tutor_sessions.domain.messages import ChatMessage
from tutor_sessions.domain.notifications import Notification, NotificationType
from tutor_sessions.domain.sessions import (
    ConfirmedSession,
    SessionRequest,
    SessionType,
)
from tutor_sessions.domain.statuses import SessionStatus

REQUEST_MUTABLE_FIELDS = (
    "status",
    "resolved_by",
    "responded_at",
    "rejection_reason",
    "cancellation_reason",
    "updated_at",
)

SESSION_MUTABLE_FIELDS = (
    "status",
    "meeting_reference",
    "rating",
    "review",
    "rated_at",
    "cancellation_reason",
    "cancelled_by",
    "cancelled_at",
    "started_at",
    "completed_at",
    "actual_duration_minutes",
    "updated_at",
)

_DATETIME_FIELDS = {
    "created_at",
    "updated_at",
    "responded_at",
    "rated_at",
    "cancelled_at",
    "started_at",
    "completed_at",
    "read_at",
}
_DATE_FIELDS = {"proposed_date", "session_date"}
_FLOAT_FIELDS = {"duration_hours", "hourly_rate", "total_cost"}


def to_row(
    record: SessionRequest | ConfirmedSession | Notification | ChatMessage,
) -> dict:
    """Serialize a domain record into a JSON-compatible row."""
    return {item.name: encode(getattr(record, item.name)) for item in fields(record)}


def patch_row(
    record: SessionRequest | ConfirmedSession, names: tuple[str, ...]
) -> dict:
    """Serialize only the named fields of a record."""
    return {name: encode(getattr(record, name)) for name in names}


def encode(value: object) -> object:
    """Encode a single domain value for storage."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value


def request_from_row(row: dict) -> SessionRequest:
    """Build a session request from a stored row."""
    values = _decode(row, SessionRequest)
    values["status"] = SessionStatus(values["status"])
    values["session_type"] = SessionType(values["session_type"])
    return SessionRequest(**values)


def session_from_row(row: dict) -> ConfirmedSession:
    """Build a confirmed session from a stored row."""
    values = _decode(row, ConfirmedSession)
    values["status"] = SessionStatus(values["status"])
    values["session_type"] = SessionType(values["session_type"])
    return ConfirmedSession(**values)


def notification_from_row(row: dict) -> Notification:
    """Build a notification from a stored row."""
    values = _decode(row, Notification)
    values["type"] = NotificationType(values["type"])
    values["is_read"] = bool(values["is_read"])
    return Notification(**values)


def message_from_row(row: dict) -> ChatMessage:
    """Build a chat message from a stored row."""
    values = _decode(row, ChatMessage)
    values["is_read"] = bool(values["is_read"])
    return ChatMessage(**values)


def _decode(row: dict, record_type: type) -> dict[str, object]:
    values: dict[str, object] = {}
    for item in fields(record_type):
        if item.name not in row:
            continue
        value = row[item.name]
        if value is not None and item.name in _DATETIME_FIELDS:
            value = datetime.fromisoformat(str(value))
        elif value is not None and item.name in _DATE_FIELDS:
            value = date.fromisoformat(str(value)[:10])
        elif value is not None and item.name in _FLOAT_FIELDS:
            value = float(value)
        values[item.name] = value
    return values
