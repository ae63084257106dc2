"""Session chat: stored messages, room relay and read marks."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tutor_sessions.domain.errors import AccessDenied, PolicyRejection
from tutor_sessions.domain.events import NewMessage
from tutor_sessions.domain.messages import ChatMessage, MessageDraft
from tutor_sessions.domain.models import Caller
from tutor_sessions.domain.sessions import ConfirmedSession
from tutor_sessions.domain.statuses import ACTIVE_SESSION_STATUSES
from tutor_sessions.services.failures import read_primary_or, write_with_fallback
from tutor_sessions.services.mediator import PersistenceMediator
from tutor_sessions.services.notifications import NotificationService, message_notice
from tutor_sessions.services.realtime import Connection, RealtimeHub, session_room
from tutor_sessions.services.store import SessionStore

T = TypeVar("T")

_logger = logging.getLogger(__name__)


@dataclass
class MessageService:
    """Stores chat messages and relays them to the session room.

    A message is written to the primary store, or to the mirror while the
    primary is unavailable, and lives only in the store that took it.
    History and unread counts therefore read both stores.
    """

    primary: SessionStore
    mirror: SessionStore
    hub: RealtimeHub
    mediator: PersistenceMediator
    notifications: NotificationService
    primary_timeout_seconds: float = 10.0

    async def send(
        self,
        session_id: str,
        caller: Caller,
        content: str,
        message_type: str = "text",
        exclude: Connection | None = None,
    ) -> ChatMessage:
        """Store a message and deliver it to the session room.

        The counterpart gets a notification when none of their connections
        is in the room.
        """
        session = await self.mediator.get_session(session_id, caller)
        if caller.user_id not in (session.student_id, session.tutor_id):
            raise AccessDenied()
        if session.status not in ACTIVE_SESSION_STATUSES:
            raise PolicyRejection(
                "chat_unavailable", "Chat is only available for active sessions"
            )
        draft = MessageDraft(
            session_id=session.id,
            sender_id=caller.user_id,
            receiver_id=session.counterpart_of(caller.user_id),
            content=content.strip(),
            message_type=message_type,
        )
        draft.validate()
        stored = await write_with_fallback(
            lambda: self.primary.create_message(draft),
            lambda: self.mirror.create_message(draft),
            timeout=self.primary_timeout_seconds,
            label="chat message",
        )
        self._relay(stored, exclude)
        await self._notify_if_absent(session, stored)
        return stored

    async def history(self, session_id: str, caller: Caller) -> list[ChatMessage]:
        """Return a session's messages oldest first and mark the caller's read."""
        session = await self.mediator.get_session(session_id, caller)
        primary_items = await self._primary_or(
            lambda: self.primary.list_messages(session.id), default=[]
        )
        mirror_items = await asyncio.to_thread(self.mirror.list_messages, session.id)
        merged = {item.id: item for item in mirror_items}
        merged.update({item.id: item for item in primary_items})
        await self._primary_or(
            lambda: self.primary.mark_messages_read(session.id, caller.user_id),
            default=0,
        )
        await asyncio.to_thread(
            self.mirror.mark_messages_read, session.id, caller.user_id
        )
        return sorted(merged.values(), key=lambda item: item.created_at)

    async def unread_count_for(self, user_id: str) -> int:
        """Count unread messages addressed to a user in both stores."""
        primary_count = await self._primary_or(
            lambda: self.primary.count_unread_messages(user_id), default=0
        )
        mirror_count = await asyncio.to_thread(
            self.mirror.count_unread_messages, user_id
        )
        return primary_count + mirror_count

    def _relay(self, message: ChatMessage, exclude: Connection | None) -> None:
        self.hub.emit_to_session(
            message.session_id,
            NewMessage(
                message_id=message.id,
                session_id=message.session_id,
                sender_id=message.sender_id,
                content=message.content,
                message_type=message.message_type,
                sent_at=message.created_at,
            ),
            exclude=exclude,
        )

    async def _notify_if_absent(
        self, session: ConfirmedSession, message: ChatMessage
    ) -> None:
        if self.hub.is_member(message.receiver_id, session_room(session.id)):
            return
        _logger.debug(
            "Recipient %s is not in session %s, sending a notice",
            message.receiver_id,
            session.id,
        )
        await self.notifications.notify(
            message_notice(session, message.sender_id, message.content)
        )

    async def _primary_or(self, func: Callable[[], T], *, default: T) -> T:
        return await read_primary_or(
            func,
            timeout=self.primary_timeout_seconds,
            default=default,
            label="chat messages",
        )
