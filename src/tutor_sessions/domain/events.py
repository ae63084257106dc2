"""Realtime channel events.

Every event the channel can deliver has a fixed payload shape. The wire
form is ``{"event": <name>, "payload": {...}}``.
"""

from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import StrEnum
from typing import ClassVar


class EventName(StrEnum):
    """Closed set of server-to-client event names."""

    NEW_SESSION_REQUEST = "newSessionRequest"
    SESSION_STATUS_UPDATED = "sessionStatusUpdated"
    NEW_MESSAGE = "newMessage"
    USER_TYPING = "userTyping"
    USER_STOPPED_TYPING = "userStoppedTyping"
    VIDEO_CALL_STARTED = "videoCallStarted"
    VIDEO_CALL_ENDED = "videoCallEnded"
    USER_JOINED = "userJoined"
    USER_LEFT = "userLeft"
    NEW_NOTIFICATION = "newNotification"
    ERROR = "error"


@dataclass(frozen=True)
class RealtimeEvent:
    """Base class for channel events."""

    name: ClassVar[EventName]

    def to_message(self) -> dict[str, object]:
        """Return the JSON-ready wire message."""
        payload = {key: _jsonable(value) for key, value in asdict(self).items()}
        return {"event": self.name.value, "payload": payload}


@dataclass(frozen=True)
class NewSessionRequest(RealtimeEvent):
    name: ClassVar[EventName] = EventName.NEW_SESSION_REQUEST

    request_id: str
    student_id: str
    student_name: str
    subject: str
    proposed_date: date
    start_time: str
    end_time: str


@dataclass(frozen=True)
class SessionStatusUpdated(RealtimeEvent):
    name: ClassVar[EventName] = EventName.SESSION_STATUS_UPDATED

    session_id: str
    status: str
    updated_by: str | None
    reason: str | None = None


@dataclass(frozen=True)
class NewMessage(RealtimeEvent):
    name: ClassVar[EventName] = EventName.NEW_MESSAGE

    message_id: str
    session_id: str
    sender_id: str
    content: str
    message_type: str
    sent_at: datetime


@dataclass(frozen=True)
class UserTyping(RealtimeEvent):
    name: ClassVar[EventName] = EventName.USER_TYPING

    session_id: str
    user_id: str


@dataclass(frozen=True)
class UserStoppedTyping(RealtimeEvent):
    name: ClassVar[EventName] = EventName.USER_STOPPED_TYPING

    session_id: str
    user_id: str


@dataclass(frozen=True)
class VideoCallStarted(RealtimeEvent):
    name: ClassVar[EventName] = EventName.VIDEO_CALL_STARTED

    session_id: str
    room_url: str
    initiator_id: str


@dataclass(frozen=True)
class VideoCallEnded(RealtimeEvent):
    name: ClassVar[EventName] = EventName.VIDEO_CALL_ENDED

    session_id: str
    ended_by: str


@dataclass(frozen=True)
class UserJoined(RealtimeEvent):
    name: ClassVar[EventName] = EventName.USER_JOINED

    session_id: str
    user_id: str


@dataclass(frozen=True)
class UserLeft(RealtimeEvent):
    name: ClassVar[EventName] = EventName.USER_LEFT

    session_id: str
    user_id: str


@dataclass(frozen=True)
class NewNotification(RealtimeEvent):
    name: ClassVar[EventName] = EventName.NEW_NOTIFICATION

    notification_id: str
    type: str
    title: str
    message: str
    related_entity_id: str | None
    created_at: datetime


@dataclass(frozen=True)
class ChannelError(RealtimeEvent):
    name: ClassVar[EventName] = EventName.ERROR

    message: str


def _jsonable(value: object) -> object:
    if isinstance(value, datetime | date):
        return value.isoformat()
    return value
