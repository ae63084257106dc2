"""Supabase-backed primary session store."""

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from uuid import uuid4

from supabase import Client

from tutor_sessions.adapters.rows import (
    REQUEST_MUTABLE_FIELDS,
    SESSION_MUTABLE_FIELDS,
    encode,
    message_from_row,
    notification_from_row,
    patch_row,
    request_from_row,
    session_from_row,
    to_row,
)
from tutor_sessions.domain.errors import RecordNotFound
from tutor_sessions.domain.messages import ChatMessage, MessageDraft
from tutor_sessions.domain.notifications import Notification, NotificationDraft
from tutor_sessions.domain.sessions import (
    ConfirmedSession,
    SessionRequest,
    SessionRequestDraft,
    new_request,
)
from tutor_sessions.domain.statuses import ActorRole, SessionStatus
from tutor_sessions.services.store import RequestCommit, SessionCommit, SessionStore


@dataclass
class SupabaseSessionStore(SessionStore):
    """Supabase implementation of the session store.

    Multi-record writes go through the ``commit_*`` database functions so
    the guard check, the record change and its notifications share one
    transaction.
    """

    client: Client

    def create_request(
        self, draft: SessionRequestDraft, notification: NotificationDraft
    ) -> RequestCommit:
        """Insert a pending request and its tutor notification."""
        request = new_request(draft, str(uuid4()), datetime.now(tz=UTC))
        response = self.client.rpc(
            "create_session_request",
            {
                "p_request": to_row(request),
                "p_notification": _draft_row(
                    replace(notification, related_entity_id=request.id)
                ),
            },
        ).execute()
        if not response.data:
            raise RuntimeError("Failed to create session request")
        return _request_commit(response.data)

    def get_request(self, request_id: str) -> SessionRequest | None:
        """Return a request by id, if present."""
        response = (
            self.client.table("session_requests")
            .select("*")
            .eq("id", request_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return request_from_row(response.data[0])

    def list_requests(
        self,
        *,
        tutor_id: str | None = None,
        student_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[SessionRequest]:
        """Return requests matching every given filter, oldest first."""
        query = self.client.table("session_requests").select("*")
        if tutor_id is not None:
            query = query.eq("tutor_id", tutor_id)
        if student_id is not None:
            query = query.eq("student_id", student_id)
        if status is not None:
            query = query.eq("status", status.value)
        response = query.order("created_at").execute()
        return [request_from_row(row) for row in response.data or []]

    def update_request(
        self,
        updated: SessionRequest,
        expected: dict[str, object],
        session: ConfirmedSession | None,
        notifications: list[NotificationDraft],
    ) -> RequestCommit:
        """Commit a request change through ``commit_request_change``."""
        response = self.client.rpc(
            "commit_request_change",
            {
                "p_request_id": updated.id,
                "p_expected": _expected_row(expected),
                "p_patch": patch_row(updated, REQUEST_MUTABLE_FIELDS),
                "p_session": to_row(session) if session else None,
                "p_notifications": [_draft_row(item) for item in notifications],
            },
        ).execute()
        if not response.data:
            raise RecordNotFound("Session request", updated.id)
        return _request_commit(response.data)

    def get_session(self, session_id: str) -> ConfirmedSession | None:
        """Return a confirmed session by id, if present."""
        response = (
            self.client.table("sessions")
            .select("*")
            .eq("id", session_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return session_from_row(response.data[0])

    def list_sessions(
        self, user_id: str, role: ActorRole | None = None
    ) -> list[ConfirmedSession]:
        """Return the user's sessions, oldest first."""
        query = self.client.table("sessions").select("*")
        if role is ActorRole.STUDENT:
            query = query.eq("student_id", user_id)
        elif role is ActorRole.TUTOR:
            query = query.eq("tutor_id", user_id)
        else:
            query = query.or_(f"student_id.eq.{user_id},tutor_id.eq.{user_id}")
        response = query.order("created_at").execute()
        return [session_from_row(row) for row in response.data or []]

    def update_session(
        self,
        updated: ConfirmedSession,
        expected: dict[str, object],
        notifications: list[NotificationDraft],
    ) -> SessionCommit:
        """Commit a session change through ``commit_session_change``."""
        response = self.client.rpc(
            "commit_session_change",
            {
                "p_session_id": updated.id,
                "p_expected": _expected_row(expected),
                "p_patch": patch_row(updated, SESSION_MUTABLE_FIELDS),
                "p_notifications": [_draft_row(item) for item in notifications],
            },
        ).execute()
        if not response.data:
            raise RecordNotFound("Session", updated.id)
        data = response.data
        return SessionCommit(
            session=session_from_row(data["session"]),
            applied=bool(data["applied"]),
            notifications=[
                notification_from_row(row) for row in data.get("notifications") or []
            ],
        )

    def create_notification(self, draft: NotificationDraft) -> Notification:
        """Insert a standalone notification."""
        response = (
            self.client.table("notifications").insert(_draft_row(draft)).execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create notification")
        return notification_from_row(response.data[0])

    def list_notifications(self, recipient_id: str) -> list[Notification]:
        """Return a recipient's notifications, newest first."""
        response = (
            self.client.table("notifications")
            .select("*")
            .eq("recipient_id", recipient_id)
            .order("created_at", desc=True)
            .execute()
        )
        return [notification_from_row(row) for row in response.data or []]

    def mark_notification_read(self, notification_id: str) -> Notification | None:
        """Mark one notification read."""
        response = (
            self.client.table("notifications")
            .update({"is_read": True, "read_at": datetime.now(tz=UTC).isoformat()})
            .eq("id", notification_id)
            .execute()
        )
        if not response.data:
            return None
        return notification_from_row(response.data[0])

    def mark_all_notifications_read(self, recipient_id: str) -> int:
        """Mark all of a recipient's unread notifications read."""
        response = (
            self.client.table("notifications")
            .update({"is_read": True, "read_at": datetime.now(tz=UTC).isoformat()})
            .eq("recipient_id", recipient_id)
            .eq("is_read", False)
            .execute()
        )
        return len(response.data or [])

    def create_message(self, draft: MessageDraft) -> ChatMessage:
        """Insert a chat message."""
        response = (
            self.client.table("messages")
            .insert(
                {
                    "session_id": draft.session_id,
                    "sender_id": draft.sender_id,
                    "receiver_id": draft.receiver_id,
                    "content": draft.content,
                    "message_type": draft.message_type,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create message")
        return message_from_row(response.data[0])

    def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Return a session's messages, oldest first."""
        response = (
            self.client.table("messages")
            .select("*")
            .eq("session_id", session_id)
            .order("created_at")
            .execute()
        )
        return [message_from_row(row) for row in response.data or []]

    def mark_messages_read(self, session_id: str, receiver_id: str) -> int:
        response = (
            self.client.table("messages")
            .update({"is_read": True, "read_at": datetime.now(tz=UTC).isoformat()})
            .eq("session_id", session_id)
            .eq("receiver_id", receiver_id)
            .eq("is_read", False)
            .execute()
        )
        return len(response.data or [])

    def count_unread_messages(self, receiver_id: str) -> int:
        response = (
            self.client.table("messages")
            .select("id", count="exact")
            .eq("receiver_id", receiver_id)
            .eq("is_read", False)
            .execute()
        )
        if response.count is not None:
            return response.count
        return len(response.data or [])


def _request_commit(data: dict) -> RequestCommit:
    session_row = data.get("session")
    return RequestCommit(
        request=request_from_row(data["request"]),
        applied=bool(data["applied"]),
        session=session_from_row(session_row) if session_row else None,
        notifications=[
            notification_from_row(row) for row in data.get("notifications") or []
        ],
    )


def _draft_row(draft: NotificationDraft) -> dict[str, object]:
    return {
        "recipient_id": draft.recipient_id,
        "type": draft.type.value,
        "title": draft.title,
        "message": draft.message,
        "related_entity_id": draft.related_entity_id,
    }


def _expected_row(expected: dict[str, object]) -> dict[str, object]:
    return {name: encode(value) for name, value in expected.items()}
