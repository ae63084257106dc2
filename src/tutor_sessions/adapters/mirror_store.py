"""Local mirror store that emulates the backend when it is unreachable."""

import functools
import json
import logging
import threading
import time
from collections.abc import Callable
from contextlib import AbstractContextManager
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Protocol, TypeVar
from uuid import uuid4

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
from tutor_sessions.domain.errors import LocalStorageFailure, RecordNotFound
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

T = TypeVar("T")

_logger = logging.getLogger(__name__)

REQUESTS = "session_requests"
SESSIONS = "sessions"
NOTIFICATIONS = "notifications"
MESSAGES = "messages"
_COLLECTIONS = (REQUESTS, SESSIONS, NOTIFICATIONS, MESSAGES)
_ID_PREFIXES = {
    REQUESTS: "req",
    SESSIONS: "session",
    NOTIFICATIONS: "notif",
    MESSAGES: "msg",
}

Row = dict[str, object]
Snapshot = dict[str, list[Row]]


class MirrorStorage(Protocol):
    """Storage medium holding the serialized mirror snapshot."""

    def read(self) -> str | None:
        """Return the stored snapshot text, if any."""

    def write(self, payload: str) -> None:
        """Persist the snapshot text, raising ``LocalStorageFailure`` on error."""

    def locked(self) -> AbstractContextManager[object]:
        """Hold the medium exclusively for one read-modify-write cycle."""


def _exclusive(method: Callable[..., T]) -> Callable[..., T]:
    """Run a mutating store method with the snapshot held exclusively."""

    @functools.wraps(method)
    def wrapper(self: "MirrorSessionStore", *args: object, **kwargs: object) -> T:
        with self._lock, self.storage.locked():
            return method(self, *args, **kwargs)

    return wrapper


@dataclass
class MirrorSessionStore(SessionStore):
    """Session store kept in a single snapshot on the local storage medium.

    Each mutating operation holds the store's lock and the medium's lock
    while it reads the latest persisted snapshot, applies its change and
    writes the whole snapshot back in one ``write`` call. Concurrent
    writers are serialised, so none of them overwrites another's commit
    with a stale copy, and a multi-record change commits as a unit.
    """

    storage: MirrorStorage
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @_exclusive
    def create(self, collection: str, row: Row) -> Row:
        """Append a record, assigning an id and timestamps."""
        snapshot = self._load()
        created = self._append(snapshot, collection, row)
        self._save(snapshot)
        return created

    def query_by(self, collection: str, predicate: Callable[[Row], bool]) -> list[Row]:
        """Return matching records in insertion order."""
        return [row for row in self._load()[collection] if predicate(row)]

    @_exclusive
    def update(self, collection: str, record_id: str, patch: Row) -> Row | None:
        """Merge ``patch`` into a record; ``None`` when the id is unknown."""
        snapshot = self._load()
        row = _find(snapshot[collection], record_id)
        if row is None:
            return None
        row.update(patch)
        row["updated_at"] = _now().isoformat()
        self._save(snapshot)
        return row

    @_exclusive
    def create_request(
        self, draft: SessionRequestDraft, notification: NotificationDraft
    ) -> RequestCommit:
        """Persist a pending request and notify its tutor in one commit."""
        snapshot = self._load()
        request = new_request(draft, _new_id(REQUESTS), _now())
        snapshot[REQUESTS].append(to_row(request))
        created = self._add_notification(
            snapshot, replace(notification, related_entity_id=request.id)
        )
        self._save(snapshot)
        _logger.info("Mirror store created request: request_id=%s", request.id)
        return RequestCommit(request=request, applied=True, notifications=[created])

    def get_request(self, request_id: str) -> SessionRequest | None:
        """Return a request by id, if present."""
        row = _find(self._load()[REQUESTS], request_id)
        return request_from_row(row) if row else None

    def list_requests(
        self,
        *,
        tutor_id: str | None = None,
        student_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[SessionRequest]:
        """Return requests matching every given filter."""
        rows = self.query_by(
            REQUESTS,
            lambda row: (tutor_id is None or row["tutor_id"] == tutor_id)
            and (student_id is None or row["student_id"] == student_id)
            and (status is None or row["status"] == status),
        )
        return [request_from_row(row) for row in rows]

    @_exclusive
    def update_request(
        self,
        updated: SessionRequest,
        expected: dict[str, object],
        session: ConfirmedSession | None,
        notifications: list[NotificationDraft],
    ) -> RequestCommit:
        """Apply a request change, its confirmed session and notifications."""
        snapshot = self._load()
        row = _find(snapshot[REQUESTS], updated.id)
        if row is None:
            raise RecordNotFound("Session request", updated.id)
        if not _matches(row, expected):
            return RequestCommit(request=request_from_row(row), applied=False)
        row.update(patch_row(updated, REQUEST_MUTABLE_FIELDS))
        row["updated_at"] = _now().isoformat()
        confirmed = None
        if session is not None:
            existing = _find(snapshot[SESSIONS], session.id)
            if existing is None:
                snapshot[SESSIONS].append(to_row(session))
                confirmed = session
            else:
                confirmed = session_from_row(existing)
        created = [self._add_notification(snapshot, item) for item in notifications]
        self._save(snapshot)
        return RequestCommit(
            request=request_from_row(row),
            applied=True,
            session=confirmed,
            notifications=created,
        )

    def get_session(self, session_id: str) -> ConfirmedSession | None:
        """Return a confirmed session by id, if present."""
        row = _find(self._load()[SESSIONS], session_id)
        return session_from_row(row) if row else None

    def list_sessions(
        self, user_id: str, role: ActorRole | None = None
    ) -> list[ConfirmedSession]:
        """Return the user's sessions, filtered by the side they take."""
        if role is ActorRole.STUDENT:
            rows = self.query_by(SESSIONS, lambda row: row["student_id"] == user_id)
        elif role is ActorRole.TUTOR:
            rows = self.query_by(SESSIONS, lambda row: row["tutor_id"] == user_id)
        else:
            rows = self.query_by(
                SESSIONS,
                lambda row: user_id in {row["student_id"], row["tutor_id"]},
            )
        return [session_from_row(row) for row in rows]

    @_exclusive
    def update_session(
        self,
        updated: ConfirmedSession,
        expected: dict[str, object],
        notifications: list[NotificationDraft],
    ) -> SessionCommit:
        """Apply a session change and its notifications."""
        snapshot = self._load()
        row = _find(snapshot[SESSIONS], updated.id)
        if row is None:
            raise RecordNotFound("Session", updated.id)
        if not _matches(row, expected):
            return SessionCommit(session=session_from_row(row), applied=False)
        row.update(patch_row(updated, SESSION_MUTABLE_FIELDS))
        row["updated_at"] = _now().isoformat()
        created = [self._add_notification(snapshot, item) for item in notifications]
        self._save(snapshot)
        return SessionCommit(
            session=session_from_row(row), applied=True, notifications=created
        )

    @_exclusive
    def create_notification(self, draft: NotificationDraft) -> Notification:
        """Persist a standalone notification."""
        snapshot = self._load()
        created = self._add_notification(snapshot, draft)
        self._save(snapshot)
        return created

    def list_notifications(self, recipient_id: str) -> list[Notification]:
        """Return a recipient's notifications, newest first."""
        rows = self.query_by(
            NOTIFICATIONS, lambda row: row["recipient_id"] == recipient_id
        )
        notifications = [notification_from_row(row) for row in reversed(rows)]
        return sorted(notifications, key=lambda item: item.created_at, reverse=True)

    @_exclusive
    def mark_notification_read(self, notification_id: str) -> Notification | None:
        """Mark one notification read."""
        snapshot = self._load()
        row = _find(snapshot[NOTIFICATIONS], notification_id)
        if row is None:
            return None
        if not row.get("is_read"):
            row["is_read"] = True
            row["read_at"] = _now().isoformat()
            self._save(snapshot)
        return notification_from_row(row)

    @_exclusive
    def mark_all_notifications_read(self, recipient_id: str) -> int:
        """Mark all of a recipient's unread notifications read."""
        snapshot = self._load()
        now = _now().isoformat()
        count = 0
        for row in snapshot[NOTIFICATIONS]:
            if row["recipient_id"] == recipient_id and not row.get("is_read"):
                row["is_read"] = True
                row["read_at"] = now
                count += 1
        if count:
            self._save(snapshot)
        return count

    @_exclusive
    def create_message(self, draft: MessageDraft) -> ChatMessage:
        """Persist a chat message."""
        snapshot = self._load()
        row = self._append(
            snapshot,
            MESSAGES,
            {
                "session_id": draft.session_id,
                "sender_id": draft.sender_id,
                "receiver_id": draft.receiver_id,
                "content": draft.content,
                "message_type": draft.message_type,
                "is_read": False,
                "read_at": None,
            },
        )
        self._save(snapshot)
        return message_from_row(row)

    def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Return a session's messages, oldest first."""
        rows = self.query_by(MESSAGES, lambda row: row["session_id"] == session_id)
        return [message_from_row(row) for row in rows]

    @_exclusive
    def mark_messages_read(self, session_id: str, receiver_id: str) -> int:
        """Mark a session's unread messages to ``receiver_id`` read."""
        snapshot = self._load()
        now = _now().isoformat()
        count = 0
        for row in snapshot[MESSAGES]:
            if (
                row["session_id"] == session_id
                and row["receiver_id"] == receiver_id
                and not row.get("is_read")
            ):
                row["is_read"] = True
                row["read_at"] = now
                count += 1
        if count:
            self._save(snapshot)
        return count

    def count_unread_messages(self, receiver_id: str) -> int:
        rows = self.query_by(
            MESSAGES,
            lambda row: row["receiver_id"] == receiver_id and not row.get("is_read"),
        )
        return len(rows)

    def _add_notification(
        self, snapshot: Snapshot, draft: NotificationDraft
    ) -> Notification:
        row = self._append(
            snapshot,
            NOTIFICATIONS,
            {
                "recipient_id": draft.recipient_id,
                "type": draft.type.value,
                "title": draft.title,
                "message": draft.message,
                "related_entity_id": draft.related_entity_id,
                "is_read": False,
                "read_at": None,
            },
        )
        return notification_from_row(row)

    def _append(self, snapshot: Snapshot, collection: str, row: Row) -> Row:
        now = _now().isoformat()
        created = {
            **row,
            "id": row.get("id") or _new_id(collection),
            "created_at": row.get("created_at") or now,
        }
        if collection not in (NOTIFICATIONS, MESSAGES):
            created["updated_at"] = now
        snapshot[collection].append(created)
        return created

    def _load(self) -> Snapshot:
        raw = self.storage.read()
        if raw is None:
            return {name: [] for name in _COLLECTIONS}
        try:
            snapshot = json.loads(raw)
        except ValueError as exc:
            raise LocalStorageFailure("Mirror snapshot is not valid JSON") from exc
        for name in _COLLECTIONS:
            snapshot.setdefault(name, [])
        return snapshot

    def _save(self, snapshot: Snapshot) -> None:
        try:
            payload = json.dumps(snapshot)
        except (TypeError, ValueError) as exc:
            raise LocalStorageFailure("Failed to serialize mirror snapshot") from exc
        self.storage.write(payload)


def _find(rows: list[Row], record_id: str) -> Row | None:
    for row in rows:
        if row.get("id") == record_id:
            return row
    return None


def _matches(row: Row, expected: dict[str, object]) -> bool:
    return all(row.get(name) == encode(value) for name, value in expected.items())


def _new_id(collection: str) -> str:
    return f"{_ID_PREFIXES[collection]}_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


def _now() -> datetime:
    return datetime.now(tz=UTC)
