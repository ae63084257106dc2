"""Room-scoped realtime event hub and per-connection channel state."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from tutor_sessions.domain.events import (
    ChannelError,
    EventName,
    RealtimeEvent,
    SessionStatusUpdated,
    UserJoined,
    UserLeft,
    UserStoppedTyping,
    UserTyping,
    VideoCallEnded,
    VideoCallStarted,
)
from tutor_sessions.domain.statuses import SessionStatus
from tutor_sessions.services.reconciliation import ReconciliationPoller, StatusTracker

_logger = logging.getLogger(__name__)


class Connection(Protocol):
    """A connected client that accepts outbound messages without blocking."""

    connection_id: str
    user_id: str

    def deliver(self, message: dict[str, object]) -> None:
        """Queue a message for delivery to the client."""


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def session_room(session_id: str) -> str:
    return f"session:{session_id}"


@dataclass
class Presence:
    """Last known state of a connected user."""

    user_id: str
    status: str
    last_seen: datetime


class RealtimeHub:
    """Tracks rooms and fans events out to their members.

    Emitting never waits on a client. A connection whose delivery fails is
    dropped from every room and simply stops receiving events.
    """

    def __init__(self) -> None:
        self._rooms: dict[str, dict[str, Connection]] = defaultdict(dict)
        self._presence: dict[str, Presence] = {}
        self._connections: dict[str, dict[str, Connection]] = defaultdict(dict)

    def connect(self, connection: Connection) -> None:
        """Register a connection and join its personal room."""
        self._connections[connection.user_id][connection.connection_id] = connection
        self.join(connection, user_room(connection.user_id))
        self._touch(connection.user_id, "online")

    def disconnect(self, connection: Connection) -> None:
        """Remove a connection from every room it joined."""
        for room in list(self._rooms):
            self._rooms[room].pop(connection.connection_id, None)
            if not self._rooms[room]:
                del self._rooms[room]
        user_connections = self._connections.get(connection.user_id, {})
        user_connections.pop(connection.connection_id, None)
        if not user_connections:
            self._connections.pop(connection.user_id, None)
            self._presence.pop(connection.user_id, None)

    def join(self, connection: Connection, room: str) -> None:
        self._rooms[room][connection.connection_id] = connection

    def leave(self, connection: Connection, room: str) -> bool:
        """Leave a room; return whether the connection was a member."""
        members = self._rooms.get(room)
        if not members or connection.connection_id not in members:
            return False
        del members[connection.connection_id]
        if not members:
            del self._rooms[room]
        return True

    def is_member(self, user_id: str, room: str) -> bool:
        """Return whether any of the user's connections is in the room."""
        return any(
            member.user_id == user_id for member in self._rooms.get(room, {}).values()
        )

    def emit(
        self, room: str, event: RealtimeEvent, exclude: Connection | None = None
    ) -> int:
        """Deliver an event to every member of a room; return the count."""
        message = event.to_message()
        delivered = 0
        for member in list(self._rooms.get(room, {}).values()):
            if exclude is not None and member.connection_id == exclude.connection_id:
                continue
            try:
                member.deliver(message)
            except Exception as exc:
                _logger.warning(
                    "Dropping connection %s after failed delivery: %s",
                    member.connection_id,
                    exc,
                )
                self.disconnect(member)
                continue
            delivered += 1
        return delivered

    def emit_to_user(self, user_id: str, event: RealtimeEvent) -> int:
        return self.emit(user_room(user_id), event)

    def emit_to_session(
        self, session_id: str, event: RealtimeEvent, exclude: Connection | None = None
    ) -> int:
        return self.emit(session_room(session_id), event, exclude=exclude)

    def update_status(self, connection: Connection, status: str) -> None:
        """Record a presence status for the connection's user."""
        self._touch(connection.user_id, status)

    def presence(self) -> list[Presence]:
        """Return connected users."""
        return sorted(self._presence.values(), key=lambda item: item.user_id)

    def _touch(self, user_id: str, status: str) -> None:
        self._presence[user_id] = Presence(
            user_id=user_id, status=status, last_seen=datetime.now(tz=UTC)
        )


@dataclass
class ChannelSession:
    """State owned by one live connection: joined rooms, timers, watchers.

    The channel registers itself with the hub in place of its connection.
    Status hints for a watched record are handed to that record's tracker
    instead of being forwarded, so the poller and the hint never report the
    same change twice.

    ``close`` leaves every joined room and cancels every timer and poller.
    Timers that still fire afterwards find ``active`` unset and do nothing.
    """

    hub: RealtimeHub
    connection: Connection
    typing_timeout_seconds: float = 3.0
    active: bool = True
    _joined: set[str] = field(default_factory=set)
    _typing_timers: dict[str, asyncio.TimerHandle] = field(default_factory=dict)
    _pollers: dict[str, ReconciliationPoller] = field(default_factory=dict)
    _trackers: dict[str, StatusTracker] = field(default_factory=dict)
    _hints: dict[str, dict[str, object]] = field(default_factory=dict)

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id

    @property
    def user_id(self) -> str:
        return self.connection.user_id

    def open(self) -> None:
        self.hub.connect(self)

    def deliver(self, message: dict[str, object]) -> None:
        """Hub-facing delivery."""
        if message.get("event") == EventName.SESSION_STATUS_UPDATED:
            if self._route_status_hint(message):
                return
        self.connection.deliver(message)

    @property
    def joined_sessions(self) -> set[str]:
        return set(self._joined)

    def send(self, event: RealtimeEvent) -> None:
        """Deliver an event to this connection only."""
        if self.active:
            self.connection.deliver(event.to_message())

    def error(self, message: str) -> None:
        self.send(ChannelError(message=message))

    def join_session(self, session_id: str) -> None:
        if not self.active or session_id in self._joined:
            return
        self.hub.join(self, session_room(session_id))
        self._joined.add(session_id)
        self.hub.emit_to_session(
            session_id,
            UserJoined(session_id=session_id, user_id=self.connection.user_id),
            exclude=self,
        )

    def leave_session(self, session_id: str) -> None:
        self._cancel_typing(session_id)
        if session_id not in self._joined:
            return
        self._joined.discard(session_id)
        self.hub.leave(self, session_room(session_id))
        self.hub.emit_to_session(
            session_id,
            UserLeft(session_id=session_id, user_id=self.connection.user_id),
        )

    def typing_start(self, session_id: str) -> None:
        """Announce typing and schedule the automatic stop."""
        self._cancel_typing(session_id)
        self.hub.emit_to_session(
            session_id,
            UserTyping(session_id=session_id, user_id=self.connection.user_id),
            exclude=self,
        )
        loop = asyncio.get_running_loop()
        self._typing_timers[session_id] = loop.call_later(
            self.typing_timeout_seconds, self._typing_expired, session_id
        )

    def typing_stop(self, session_id: str) -> None:
        if self._cancel_typing(session_id):
            self._emit_stopped_typing(session_id)

    def video_call_start(self, session_id: str, room_url: str) -> None:
        self.hub.emit_to_session(
            session_id,
            VideoCallStarted(
                session_id=session_id,
                room_url=room_url,
                initiator_id=self.connection.user_id,
            ),
            exclude=self,
        )

    def video_call_end(self, session_id: str) -> None:
        self.hub.emit_to_session(
            session_id,
            VideoCallEnded(session_id=session_id, ended_by=self.connection.user_id),
            exclude=self,
        )

    def watch(
        self, key: str, tracker: StatusTracker, poller: ReconciliationPoller
    ) -> None:
        """Follow a record's status for as long as this channel is open.

        ``poller`` must drive ``tracker``. Each change the tracker accepts is
        pushed to the client once, whichever source reported it first.
        """
        if not self.active or key in self._pollers:
            return
        tracker.on_change = lambda status, previous: self._push_status(key, status)
        self._trackers[key] = tracker
        self._pollers[key] = poller
        poller.start()

    def is_watching(self, key: str) -> bool:
        return key in self._pollers

    async def close(self) -> None:
        """Leave every room and stop every timer and poller."""
        if not self.active:
            return
        self.active = False
        for session_id in list(self._joined):
            self.leave_session(session_id)
        for session_id in list(self._typing_timers):
            self._cancel_typing(session_id)
        pollers = list(self._pollers.values())
        self._pollers.clear()
        self._trackers.clear()
        for poller in pollers:
            await poller.stop()
        self.hub.disconnect(self)

    def _route_status_hint(self, message: dict[str, object]) -> bool:
        payload = message.get("payload")
        if not isinstance(payload, dict):
            return False
        key = str(payload.get("session_id"))
        tracker = self._trackers.get(key)
        if tracker is None:
            return False
        self._hints[key] = message
        try:
            tracker.apply(SessionStatus(str(payload["status"])))
        finally:
            self._hints.pop(key, None)
        return True

    def _push_status(self, key: str, status: SessionStatus) -> None:
        if not self.active:
            return
        message = self._hints.get(key) or (
            SessionStatusUpdated(
                session_id=key, status=status.value, updated_by=None
            ).to_message()
        )
        self.connection.deliver(message)

    def _typing_expired(self, session_id: str) -> None:
        if not self.active or session_id not in self._typing_timers:
            return
        del self._typing_timers[session_id]
        self._emit_stopped_typing(session_id)

    def _emit_stopped_typing(self, session_id: str) -> None:
        self.hub.emit_to_session(
            session_id,
            UserStoppedTyping(session_id=session_id, user_id=self.connection.user_id),
            exclude=self,
        )

    def _cancel_typing(self, session_id: str) -> bool:
        handle = self._typing_timers.pop(session_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True
