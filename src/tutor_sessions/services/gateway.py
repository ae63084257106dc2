"""Dispatch of client intents received over a realtime connection."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tutor_sessions.domain.errors import LocalStorageFailure, PolicyRejection
from tutor_sessions.domain.models import Caller
from tutor_sessions.domain.statuses import ACTIVE_SESSION_STATUSES
from tutor_sessions.services.mediator import PersistenceMediator
from tutor_sessions.services.messages import MessageService
from tutor_sessions.services.notifications import NotificationService
from tutor_sessions.services.realtime import ChannelSession, Connection, RealtimeHub
from tutor_sessions.services.reconciliation import ReconciliationPoller, StatusTracker

_logger = logging.getLogger(__name__)

Handler = Callable[[ChannelSession, Caller, dict[str, object]], Awaitable[None]]


class IntentError(PolicyRejection):
    """A client intent was malformed."""

    def __init__(self, message: str) -> None:
        super().__init__("invalid_intent", message)


@dataclass
class RealtimeGateway:
    """Turns client intents into hub, mediator, chat and notification calls.

    Failures are answered with an ``error`` event to the sender only.
    """

    hub: RealtimeHub
    mediator: PersistenceMediator
    notifications: NotificationService
    messages: MessageService
    typing_timeout_seconds: float = 3.0
    reconciliation_interval_seconds: float = 2.0

    def open(self, connection: Connection) -> ChannelSession:
        """Register a connection and return its channel state."""
        channel = ChannelSession(
            hub=self.hub,
            connection=connection,
            typing_timeout_seconds=self.typing_timeout_seconds,
        )
        channel.open()
        return channel

    async def handle(
        self, channel: ChannelSession, caller: Caller, message: object
    ) -> None:
        """Dispatch one inbound message."""
        try:
            intent, payload = _parse(message)
            handler = self._handlers().get(intent)
            if handler is None:
                raise IntentError(f"Unknown intent: {intent}")
            await handler(channel, caller, payload)
        except PolicyRejection as exc:
            channel.error(exc.message)
        except LocalStorageFailure as exc:
            _logger.error("Local storage failed during realtime intent: %s", exc)
            channel.error("Local storage is unavailable")
        except Exception:
            _logger.exception(
                "Realtime intent failed for connection %s", channel.connection_id
            )
            channel.error("Something went wrong")

    def _handlers(self) -> dict[str, Handler]:
        return {
            "join_session": self._join_session,
            "leave_session": self._leave_session,
            "send_message": self._send_message,
            "typing_start": self._typing_start,
            "typing_stop": self._typing_stop,
            "video_call_start": self._video_call_start,
            "video_call_end": self._video_call_end,
            "update_status": self._update_status,
            "mark_notification_read": self._mark_notification_read,
            "watch_request": self._watch_request,
        }

    async def _join_session(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        session_id = _require_text(payload, "session_id")
        session = await self.mediator.get_session(session_id, caller)
        if session.status not in ACTIVE_SESSION_STATUSES:
            raise IntentError("Session is not active")
        channel.join_session(session_id)

    async def _leave_session(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        channel.leave_session(_require_text(payload, "session_id"))

    async def _send_message(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        session_id = _joined_session(channel, payload)
        content = _require_text(payload, "content")
        channel.typing_stop(session_id)
        await self.messages.send(
            session_id,
            caller,
            content,
            str(payload.get("message_type") or "text"),
            exclude=channel,
        )

    async def _typing_start(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        channel.typing_start(_joined_session(channel, payload))

    async def _typing_stop(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        channel.typing_stop(_joined_session(channel, payload))

    async def _video_call_start(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        session_id = _joined_session(channel, payload)
        channel.video_call_start(session_id, _require_text(payload, "room_url"))

    async def _video_call_end(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        channel.video_call_end(_joined_session(channel, payload))

    async def _update_status(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        self.hub.update_status(channel.connection, _require_text(payload, "status"))

    async def _mark_notification_read(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        await self.notifications.mark_read_for(
            caller.user_id, _require_text(payload, "notification_id")
        )

    async def _watch_request(
        self, channel: ChannelSession, caller: Caller, payload: dict[str, object]
    ) -> None:
        request_id = _require_text(payload, "request_id")
        if channel.is_watching(request_id):
            return
        await self.mediator.get_request(request_id, caller)
        current = await self.mediator.current_status(request_id)
        tracker = StatusTracker(last_observed=current)
        poller = ReconciliationPoller(
            lambda: self.mediator.current_status(request_id),
            tracker,
            interval_seconds=self.reconciliation_interval_seconds,
        )
        channel.watch(request_id, tracker, poller)
        _logger.debug(
            "Watching request %s for user %s from status %s",
            request_id,
            caller.user_id,
            current,
        )


def _parse(message: object) -> tuple[str, dict[str, object]]:
    if not isinstance(message, dict):
        raise IntentError("Message must be a JSON object")
    intent = message.get("intent")
    if not isinstance(intent, str) or not intent:
        raise IntentError("Message is missing an intent")
    payload = message.get("payload") or {}
    if not isinstance(payload, dict):
        raise IntentError("Payload must be a JSON object")
    return intent, payload


def _require_text(payload: dict[str, object], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise IntentError(f"{key} is required")
    return value.strip()


def _joined_session(channel: ChannelSession, payload: dict[str, object]) -> str:
    session_id = _require_text(payload, "session_id")
    if session_id not in channel.joined_sessions:
        raise IntentError("Join the session first")
    return session_id
