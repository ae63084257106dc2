"""Persistence contract shared by the primary backend and the local mirror."""

from dataclasses import dataclass, field
from typing import Protocol

from tutor_sessions.domain.messages import ChatMessage, MessageDraft
from tutor_sessions.domain.notifications import Notification, NotificationDraft
from tutor_sessions.domain.sessions import (
    ConfirmedSession,
    SessionRequest,
    SessionRequestDraft,
)
from tutor_sessions.domain.statuses import ActorRole, SessionStatus


@dataclass(frozen=True)
class RequestCommit:
    """Result of a guarded write to a session request."""

    request: SessionRequest
    applied: bool
    session: ConfirmedSession | None = None
    notifications: list[Notification] = field(default_factory=list)


@dataclass(frozen=True)
class SessionCommit:
    """Result of a guarded write to a confirmed session."""

    session: ConfirmedSession
    applied: bool
    notifications: list[Notification] = field(default_factory=list)


class SessionStore(Protocol):
    """Entity store for requests, sessions, notifications and chat messages.

    Writes are guarded: ``expected`` maps field names to the values the
    latest persisted record must still hold. When the guard fails nothing
    is written and the commit comes back with ``applied=False``. Every
    write and its notifications land together or not at all.
    """

    def create_request(
        self, draft: SessionRequestDraft, notification: NotificationDraft
    ) -> RequestCommit:
        """Persist a pending request and its notification."""

    def get_request(self, request_id: str) -> SessionRequest | None:
        """Return a request by id, if present."""

    def list_requests(
        self,
        *,
        tutor_id: str | None = None,
        student_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[SessionRequest]:
        """Return matching requests in insertion order."""

    def update_request(
        self,
        updated: SessionRequest,
        expected: dict[str, object],
        session: ConfirmedSession | None,
        notifications: list[NotificationDraft],
    ) -> RequestCommit:
        """Write request changes, optionally creating its confirmed session."""

    def get_session(self, session_id: str) -> ConfirmedSession | None:
        """Return a confirmed session by id, if present."""

    def list_sessions(
        self, user_id: str, role: ActorRole | None = None
    ) -> list[ConfirmedSession]:
        """Return sessions the user takes part in, in insertion order."""

    def update_session(
        self,
        updated: ConfirmedSession,
        expected: dict[str, object],
        notifications: list[NotificationDraft],
    ) -> SessionCommit:
        """Write session changes together with their notifications."""

    def create_notification(self, draft: NotificationDraft) -> Notification:
        """Persist a standalone notification."""

    def list_notifications(self, recipient_id: str) -> list[Notification]:
        """Return a recipient's notifications, newest first."""

    def mark_notification_read(self, notification_id: str) -> Notification | None:
        """Mark one notification read; ``None`` when it does not exist."""

    def mark_all_notifications_read(self, recipient_id: str) -> int:
        """Mark every unread notification of a recipient read."""

    def create_message(self, draft: MessageDraft) -> ChatMessage:
        """Persist a chat message."""

    def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Return a session's chat messages, oldest first."""

    def mark_messages_read(self, session_id: str, receiver_id: str) -> int:
        """Mark a session's unread messages addressed to ``receiver_id`` read."""

    def count_unread_messages(self, receiver_id: str) -> int:
        """Count unread messages addressed to ``receiver_id`` across sessions."""
