"""Domain models for notifications."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class NotificationType(StrEnum):
    """Kinds of lifecycle events delivered to a recipient."""

    REQUEST_CREATED = "request-created"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    RATING_RECEIVED = "rating-received"
    NEW_MESSAGE = "new-message"
    SYSTEM = "system"


@dataclass(frozen=True)
class NotificationDraft:
    """Notification content before a store assigns it an id."""

    recipient_id: str
    type: NotificationType
    title: str
    message: str
    related_entity_id: str | None = None


@dataclass(frozen=True)
class Notification:
    """A persisted notification owned by its recipient."""

    id: str
    recipient_id: str
    type: NotificationType
    title: str
    message: str
    related_entity_id: str | None
    is_read: bool
    created_at: datetime
    read_at: datetime | None = None
