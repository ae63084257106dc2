"""Shared test fixtures."""

import itertools
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import uuid4

import pytest

from tutor_sessions.adapters.daily_client import StaticMeetingProvider
from tutor_sessions.adapters.mirror_store import MirrorSessionStore, MirrorStorage
from tutor_sessions.config import Settings
from tutor_sessions.containers import AppContainer, build_container
from tutor_sessions.domain.errors import BackendUnavailable, LocalStorageFailure
from tutor_sessions.domain.messages import ChatMessage, MessageDraft
from tutor_sessions.domain.models import Caller
from tutor_sessions.domain.notifications import Notification, NotificationDraft
from tutor_sessions.domain.sessions import (
    ConfirmedSession,
    SessionRequest,
    SessionRequestDraft,
    SessionType,
)
from tutor_sessions.domain.statuses import ActorRole, SessionStatus
from tutor_sessions.services.mediator import PersistenceMediator
from tutor_sessions.services.messages import MessageService
from tutor_sessions.services.notifications import NotificationService
from tutor_sessions.services.realtime import RealtimeHub
from tutor_sessions.services.store import RequestCommit, SessionCommit, SessionStore

STUDENT = Caller(user_id="student-1", role=ActorRole.STUDENT)
TUTOR = Caller(user_id="tutor-1", role=ActorRole.TUTOR)
OUTSIDER = Caller(user_id="student-2", role=ActorRole.STUDENT)
OPERATOR = Caller(user_id="ops-1", role=ActorRole.OPERATOR)


_BOOKED_DAYS = itertools.count()


def make_draft(**overrides: object) -> SessionRequestDraft:
    """Build a valid one-hour Mathematics request from student-1 to tutor-1.

    Each call books the next free day so drafts never overlap.
    """
    values: dict[str, object] = {
        "student_id": STUDENT.user_id,
        "student_name": "Sam Student",
        "tutor_id": TUTOR.user_id,
        "tutor_name": "Tara Tutor",
        "subject": "Mathematics",
        "proposed_date": date(2030, 5, 17) + timedelta(days=next(_BOOKED_DAYS)),
        "start_time": "15:00",
        "end_time": "16:00",
        "duration_hours": 1.0,
        "session_type": SessionType.ONLINE,
        "hourly_rate": 40.0,
        "description": "Algebra revision",
    }
    values.update(overrides)
    return SessionRequestDraft(**values)  # type: ignore[arg-type]


@dataclass
class InMemoryMirrorStorage(MirrorStorage):
    """Mirror storage medium kept in a string."""

    payload: str | None = None
    writes: int = 0
    fail_writes: bool = False

    def read(self) -> str | None:
        return self.payload

    def locked(self) -> AbstractContextManager[object]:
        return nullcontext()

    def write(self, payload: str) -> None:
        if self.fail_writes:
            raise LocalStorageFailure("Local storage quota exceeded")
        self.writes += 1
        self.payload = payload


@dataclass
class FakePrimaryStore(SessionStore):
    """Primary store fake backed by an in-memory snapshot.

    Setting ``failure`` makes every call raise it, emulating an outage or
    a backend-side rejection.
    """

    inner: MirrorSessionStore = field(
        default_factory=lambda: MirrorSessionStore(InMemoryMirrorStorage())
    )
    failure: Exception | None = None
    calls: list[str] = field(default_factory=list)

    def go_down(self) -> None:
        self.failure = BackendUnavailable("primary is down")

    def come_back(self) -> None:
        self.failure = None

    def create_request(
        self, draft: SessionRequestDraft, notification: NotificationDraft
    ) -> RequestCommit:
        self._check("create_request")
        return self.inner.create_request(draft, notification)

    def get_request(self, request_id: str) -> SessionRequest | None:
        self._check("get_request")
        return self.inner.get_request(request_id)

    def list_requests(
        self,
        *,
        tutor_id: str | None = None,
        student_id: str | None = None,
        status: SessionStatus | None = None,
    ) -> list[SessionRequest]:
        self._check("list_requests")
        return self.inner.list_requests(
            tutor_id=tutor_id, student_id=student_id, status=status
        )

    def update_request(
        self,
        updated: SessionRequest,
        expected: dict[str, object],
        session: ConfirmedSession | None,
        notifications: list[NotificationDraft],
    ) -> RequestCommit:
        self._check("update_request")
        return self.inner.update_request(updated, expected, session, notifications)

    def get_session(self, session_id: str) -> ConfirmedSession | None:
        self._check("get_session")
        return self.inner.get_session(session_id)

    def list_sessions(
        self, user_id: str, role: ActorRole | None = None
    ) -> list[ConfirmedSession]:
        self._check("list_sessions")
        return self.inner.list_sessions(user_id, role)

    def update_session(
        self,
        updated: ConfirmedSession,
        expected: dict[str, object],
        notifications: list[NotificationDraft],
    ) -> SessionCommit:
        self._check("update_session")
        return self.inner.update_session(updated, expected, notifications)

    def create_notification(self, draft: NotificationDraft) -> Notification:
        self._check("create_notification")
        return self.inner.create_notification(draft)

    def list_notifications(self, recipient_id: str) -> list[Notification]:
        self._check("list_notifications")
        return self.inner.list_notifications(recipient_id)

    def mark_notification_read(self, notification_id: str) -> Notification | None:
        self._check("mark_notification_read")
        return self.inner.mark_notification_read(notification_id)

    def mark_all_notifications_read(self, recipient_id: str) -> int:
        self._check("mark_all_notifications_read")
        return self.inner.mark_all_notifications_read(recipient_id)

    def create_message(self, draft: MessageDraft) -> ChatMessage:
        self._check("create_message")
        return self.inner.create_message(draft)

    def list_messages(self, session_id: str) -> list[ChatMessage]:
        self._check("list_messages")
        return self.inner.list_messages(session_id)

    def mark_messages_read(self, session_id: str, receiver_id: str) -> int:
        self._check("mark_messages_read")
        return self.inner.mark_messages_read(session_id, receiver_id)

    def count_unread_messages(self, receiver_id: str) -> int:
        self._check("count_unread_messages")
        return self.inner.count_unread_messages(receiver_id)

    def _check(self, name: str) -> None:
        self.calls.append(name)
        if self.failure is not None:
            raise self.failure


@dataclass
class RecordingConnection:
    """Realtime connection that records delivered messages."""

    user_id: str
    connection_id: str = field(default_factory=lambda: uuid4().hex)
    messages: list[dict[str, object]] = field(default_factory=list)
    broken: bool = False

    def deliver(self, message: dict[str, object]) -> None:
        if self.broken:
            raise ConnectionError("socket closed")
        self.messages.append(message)

    def events(self) -> list[str]:
        return [str(message["event"]) for message in self.messages]

    def payloads(self, event: str) -> list[dict[str, object]]:
        return [
            message["payload"]  # type: ignore[misc]
            for message in self.messages
            if message["event"] == event
        ]


@pytest.fixture
def settings(tmp_path) -> Settings:  # type: ignore[no-untyped-def]
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        mirror_store_path=str(tmp_path / "mirror.json"),
        operator_user_ids=OPERATOR.user_id,
        typing_timeout_seconds=0.05,
        reconciliation_interval_seconds=0.05,
        meeting_domain="meet.example.test",
    )


@pytest.fixture
def primary_store() -> FakePrimaryStore:
    return FakePrimaryStore()


@pytest.fixture
def mirror_storage() -> InMemoryMirrorStorage:
    return InMemoryMirrorStorage()


@pytest.fixture
def mirror_store(mirror_storage: InMemoryMirrorStorage) -> MirrorSessionStore:
    return MirrorSessionStore(mirror_storage)


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


@pytest.fixture
def notification_service(
    primary_store: FakePrimaryStore,
    mirror_store: MirrorSessionStore,
    hub: RealtimeHub,
) -> NotificationService:
    return NotificationService(primary=primary_store, mirror=mirror_store, hub=hub)


@pytest.fixture
def mediator(
    primary_store: FakePrimaryStore,
    mirror_store: MirrorSessionStore,
    hub: RealtimeHub,
    notification_service: NotificationService,
) -> PersistenceMediator:
    return PersistenceMediator(
        primary=primary_store,
        mirror=mirror_store,
        hub=hub,
        notifications=notification_service,
        primary_timeout_seconds=1.0,
    )


@pytest.fixture
def message_service(
    primary_store: FakePrimaryStore,
    mirror_store: MirrorSessionStore,
    hub: RealtimeHub,
    mediator: PersistenceMediator,
    notification_service: NotificationService,
) -> MessageService:
    return MessageService(
        primary=primary_store,
        mirror=mirror_store,
        hub=hub,
        mediator=mediator,
        notifications=notification_service,
        primary_timeout_seconds=1.0,
    )


@pytest.fixture
def container(
    settings: Settings,
    primary_store: FakePrimaryStore,
    mirror_store: MirrorSessionStore,
) -> AppContainer:
    return build_container(
        settings,
        primary=primary_store,
        mirror=mirror_store,
        meeting_provider=StaticMeetingProvider(settings.meeting_domain),
    )
