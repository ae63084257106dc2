"""Domain models for session chat messages."""

from dataclasses import dataclass
from datetime import datetime

from tutor_sessions.domain.errors import PolicyRejection

MAX_MESSAGE_LENGTH = 1000


@dataclass(frozen=True)
class MessageDraft:
    """A chat message before a store assigns it an id."""

    session_id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: str = "text"

    def validate(self) -> None:
        if not self.content.strip():
            raise PolicyRejection("invalid_message", "Message text is required")
        if len(self.content) > MAX_MESSAGE_LENGTH:
            raise PolicyRejection(
                "invalid_message", "Message cannot exceed 1000 characters"
            )


@dataclass(frozen=True)
class ChatMessage:
    """A persisted chat message between the two participants of a session."""

    id: str
    session_id: str
    sender_id: str
    receiver_id: str
    content: str
    message_type: str
    is_read: bool
    created_at: datetime
    read_at: datetime | None = None
