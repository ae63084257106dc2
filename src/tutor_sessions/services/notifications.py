"""Notification fan-out: lifecycle notices, unread counts and read marks."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tutor_sessions.domain.errors import RecordNotFound
from tutor_sessions.domain.events import NewNotification
from tutor_sessions.domain.notifications import (
    Notification,
    NotificationDraft,
    NotificationType,
)
from tutor_sessions.domain.sessions import (
    ConfirmedSession,
    SessionRequest,
    SessionRequestDraft,
)
from tutor_sessions.domain.statuses import ActorRole, SessionStatus
from tutor_sessions.services.failures import read_primary_or, write_with_fallback
from tutor_sessions.services.realtime import RealtimeHub
from tutor_sessions.services.store import SessionStore

T = TypeVar("T")


def request_created_notice(draft: SessionRequestDraft) -> NotificationDraft:
    """Tell the tutor about a new request."""
    return NotificationDraft(
        recipient_id=draft.tutor_id,
        type=NotificationType.REQUEST_CREATED,
        title="New Session Request",
        message=(
            f"{draft.student_name} has requested a {draft.subject.strip()} session"
        ),
    )


def approved_notice(request: SessionRequest) -> NotificationDraft:
    """Tell the student their request was approved."""
    return NotificationDraft(
        recipient_id=request.student_id,
        type=NotificationType.APPROVED,
        title="Session Approved!",
        message=(
            f"Your {request.subject} session with {request.tutor_name} "
            "has been approved"
        ),
        related_entity_id=request.id,
    )


def rejected_notice(request: SessionRequest, reason: str) -> NotificationDraft:
    """Tell the student their request was declined."""
    return NotificationDraft(
        recipient_id=request.student_id,
        type=NotificationType.REJECTED,
        title="Session Request Declined",
        message=(
            f"Your {request.subject} session request has been declined. "
            f"Reason: {reason.strip()}"
        ),
        related_entity_id=request.id,
    )


def cancelled_notice(
    record: SessionRequest | ConfirmedSession, actor_role: ActorRole, reason: str
) -> NotificationDraft:
    """Tell the other participant a request or session was cancelled."""
    if actor_role is ActorRole.STUDENT:
        recipient_id, actor_name = record.tutor_id, record.student_name
    else:
        recipient_id, actor_name = record.student_id, record.tutor_name
    return NotificationDraft(
        recipient_id=recipient_id,
        type=NotificationType.CANCELLED,
        title="Session Cancelled",
        message=(
            f"Your {record.subject} session has been cancelled by {actor_name}. "
            f"Reason: {reason.strip()}"
        ),
        related_entity_id=record.id,
    )


def session_status_notices(
    session: ConfirmedSession,
    status: SessionStatus,
    actor_role: ActorRole,
    reason: str | None = None,
) -> list[NotificationDraft]:
    """Build the notices for a confirmed session's status change."""
    if status is SessionStatus.CANCELLED:
        return [cancelled_notice(session, actor_role, reason or "")]
    if status is SessionStatus.IN_PROGRESS:
        return [
            NotificationDraft(
                recipient_id=session.student_id,
                type=NotificationType.SYSTEM,
                title="Session Started",
                message=f"Your {session.subject} session has started",
                related_entity_id=session.id,
            )
        ]
    if status is SessionStatus.COMPLETED:
        return [
            NotificationDraft(
                recipient_id=session.student_id,
                type=NotificationType.COMPLETED,
                title="Session Completed!",
                message=(
                    f"Your {session.subject} session with {session.tutor_name} "
                    "has been completed. Please rate your experience"
                ),
                related_entity_id=session.id,
            ),
            NotificationDraft(
                recipient_id=session.tutor_id,
                type=NotificationType.COMPLETED,
                title="Session Completed!",
                message=(
                    f"Your {session.subject} session with {session.student_name} "
                    "has been completed"
                ),
                related_entity_id=session.id,
            ),
        ]
    if status is SessionStatus.NO_SHOW:
        return [
            NotificationDraft(
                recipient_id=recipient_id,
                type=NotificationType.SYSTEM,
                title="Session Marked as No-Show",
                message=f"Your {session.subject} session was marked as a no-show",
                related_entity_id=session.id,
            )
            for recipient_id in (session.student_id, session.tutor_id)
        ]
    return []


def rating_notice(session: ConfirmedSession, rating: int) -> NotificationDraft:
    """Tell the tutor a student rated the session."""
    return NotificationDraft(
        recipient_id=session.tutor_id,
        type=NotificationType.RATING_RECEIVED,
        title="New Rating Received",
        message=(
            f"{session.student_name} rated your {session.subject} session "
            f"{rating}/5"
        ),
        related_entity_id=session.id,
    )


def message_notice(
    session: ConfirmedSession, sender_id: str, content: str
) -> NotificationDraft:
    """Tell an absent participant about a chat message."""
    sender_name = (
        session.student_name if sender_id == session.student_id else session.tutor_name
    )
    preview = content if len(content) <= 80 else f"{content[:77]}..."  # noqa: PLR2004
    return NotificationDraft(
        recipient_id=session.counterpart_of(sender_id),
        type=NotificationType.NEW_MESSAGE,
        title=f"New message from {sender_name}",
        message=preview,
        related_entity_id=session.id,
    )


@dataclass
class NotificationService:
    """Reads and marks notifications across both persistence paths.

    Each notification lives in exactly the store whose write produced it,
    so reads merge both stores and counts are always recomputed from the
    records themselves.
    """

    primary: SessionStore
    mirror: SessionStore
    hub: RealtimeHub
    primary_timeout_seconds: float = 10.0

    def publish(self, notifications: list[Notification]) -> None:
        """Push freshly stored notifications to their recipients."""
        for notification in notifications:
            self.hub.emit_to_user(
                notification.recipient_id,
                NewNotification(
                    notification_id=notification.id,
                    type=notification.type.value,
                    title=notification.title,
                    message=notification.message,
                    related_entity_id=notification.related_entity_id,
                    created_at=notification.created_at,
                ),
            )

    async def notify(self, draft: NotificationDraft) -> Notification:
        """Store and push a notification that is not tied to a transition."""
        created = await write_with_fallback(
            lambda: self.primary.create_notification(draft),
            lambda: self.mirror.create_notification(draft),
            timeout=self.primary_timeout_seconds,
            label="notify",
        )
        self.publish([created])
        return created

    async def list_for(self, recipient_id: str) -> list[Notification]:
        """Return a recipient's notifications from both stores, newest first."""
        primary_items = await self._primary_or(
            lambda: self.primary.list_notifications(recipient_id), default=[]
        )
        mirror_items = await asyncio.to_thread(
            self.mirror.list_notifications, recipient_id
        )
        merged = {item.id: item for item in mirror_items}
        merged.update({item.id: item for item in primary_items})
        return sorted(merged.values(), key=lambda item: item.created_at, reverse=True)

    async def unread_count_for(self, recipient_id: str) -> int:
        """Count unread notifications for a recipient."""
        items = await self.list_for(recipient_id)
        return sum(1 for item in items if not item.is_read)

    async def mark_read(self, notification_id: str) -> Notification | None:
        """Mark a notification read in whichever store holds it."""
        updated = await self._primary_or(
            lambda: self.primary.mark_notification_read(notification_id),
            default=None,
        )
        if updated is not None:
            return updated
        return await asyncio.to_thread(
            self.mirror.mark_notification_read, notification_id
        )

    async def mark_read_for(
        self, recipient_id: str, notification_id: str
    ) -> Notification:
        """Mark a notification read on behalf of its recipient."""
        owned = {item.id for item in await self.list_for(recipient_id)}
        if notification_id not in owned:
            raise RecordNotFound("Notification", notification_id)
        updated = await self.mark_read(notification_id)
        if updated is None:
            raise RecordNotFound("Notification", notification_id)
        return updated

    async def mark_all_read(self, recipient_id: str) -> int:
        """Mark every unread notification of a recipient read in both stores."""
        primary_count = await self._primary_or(
            lambda: self.primary.mark_all_notifications_read(recipient_id),
            default=0,
        )
        mirror_count = await asyncio.to_thread(
            self.mirror.mark_all_notifications_read, recipient_id
        )
        return primary_count + mirror_count

    async def _primary_or(self, func: Callable[[], T], *, default: T) -> T:
        return await read_primary_or(
            func,
            timeout=self.primary_timeout_seconds,
            default=default,
            label="notifications",
        )
