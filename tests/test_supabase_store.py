"""Tests for the Supabase session store."""

from dataclasses import dataclass, field
from datetime import UTC, datetime

import pytest

from tests.conftest import make_draft
from tutor_sessions.adapters.rows import to_row
from tutor_sessions.adapters.supabase_session_store import SupabaseSessionStore
from tutor_sessions.domain.errors import RecordNotFound
from tutor_sessions.domain.messages import MessageDraft
from tutor_sessions.domain.notifications import NotificationDraft, NotificationType
from tutor_sessions.domain.sessions import approve_request, new_request
from tutor_sessions.domain.statuses import ActorRole, SessionStatus

NOW = datetime(2030, 5, 1, 9, 0, tzinfo=UTC)


@dataclass
class FakeResponse:
    data: object | None
    count: int | None = None


@dataclass
class FakeTable:
    name: str
    response_queue: dict[str, list[list[dict[str, object]]]] = field(
        default_factory=lambda: {"select": [], "insert": [], "update": []}
    )
    last_payload: object | None = None
    last_filters: list[tuple[str, object]] = field(default_factory=list)
    last_order: tuple[str, bool] | None = None

    def queue(self, action: str, data: list[dict[str, object]]) -> None:
        self.response_queue[action].append(data)

    def select(self, *_args, **_kwargs) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "select"
        return self

    def insert(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "insert"
        self.last_payload = payload
        return self

    def update(self, payload) -> "FakeTable":  # type: ignore[no-untyped-def]
        self._action = "update"
        self.last_payload = payload
        return self

    def eq(self, column: str, value) -> "FakeTable":  # type: ignore[no-untyped-def]
        self.last_filters.append((column, value))
        return self

    def or_(self, expression: str) -> "FakeTable":
        self.last_filters.append(("or", expression))
        return self

    def limit(self, _count: int) -> "FakeTable":
        return self

    def order(self, column: str, desc: bool = False) -> "FakeTable":
        self.last_order = (column, desc)
        return self

    def execute(self) -> FakeResponse:
        action = getattr(self, "_action", "select")
        queue = self.response_queue.get(action, [])
        data = queue.pop(0) if queue else []
        return FakeResponse(data=data)


@dataclass
class FakeRpc:
    data: object | None

    def execute(self) -> FakeResponse:
        return FakeResponse(data=self.data)


@dataclass
class FakeSupabaseClient:
    tables: dict[str, FakeTable] = field(default_factory=dict)
    rpc_results: dict[str, list[object]] = field(default_factory=dict)
    rpc_calls: list[tuple[str, dict[str, object]]] = field(default_factory=list)

    def table(self, name: str) -> FakeTable:
        if name not in self.tables:
            self.tables[name] = FakeTable(name=name)
        return self.tables[name]

    def rpc(self, name: str, params: dict[str, object]) -> FakeRpc:
        self.rpc_calls.append((name, params))
        queue = self.rpc_results.get(name, [])
        return FakeRpc(data=queue.pop(0) if queue else None)


def _notification_row(recipient_id: str, **overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "id": "notif-1",
        "recipient_id": recipient_id,
        "type": "system",
        "title": "Hello",
        "message": "Welcome aboard",
        "related_entity_id": None,
        "is_read": False,
        "created_at": NOW.isoformat(),
        "read_at": None,
    }
    row.update(overrides)
    return row


def _notice() -> NotificationDraft:
    return NotificationDraft(
        recipient_id="tutor-1",
        type=NotificationType.REQUEST_CREATED,
        title="New Session Request",
        message="Sam Student has requested a Mathematics session",
    )


def test_create_request_goes_through_rpc() -> None:
    client = FakeSupabaseClient()
    request = new_request(make_draft(), "req-1", NOW)
    client.rpc_results["create_session_request"] = [
        {
            "request": to_row(request),
            "applied": True,
            "notifications": [
                _notification_row("tutor-1", type="request-created")
            ],
        }
    ]

    commit = SupabaseSessionStore(client).create_request(make_draft(), _notice())

    [(name, params)] = client.rpc_calls
    assert name == "create_session_request"
    sent_request = params["p_request"]
    sent_notice = params["p_notification"]
    assert isinstance(sent_request, dict)
    assert isinstance(sent_notice, dict)
    assert sent_request["status"] == "pending"
    assert sent_request["total_cost"] == 40.0
    assert sent_notice["related_entity_id"] == sent_request["id"]
    assert commit.request.id == "req-1"
    assert commit.notifications[0].type is NotificationType.REQUEST_CREATED


def test_create_request_without_data_fails() -> None:
    client = FakeSupabaseClient()

    with pytest.raises(RuntimeError):
        SupabaseSessionStore(client).create_request(make_draft(), _notice())


def test_get_and_list_requests() -> None:
    client = FakeSupabaseClient()
    table = client.table("session_requests")
    row = to_row(new_request(make_draft(), "req-1", NOW))
    table.queue("select", [row])
    table.queue("select", [row])
    store = SupabaseSessionStore(client)

    fetched = store.get_request("req-1")
    listed = store.list_requests(tutor_id="tutor-1", status=SessionStatus.PENDING)

    assert fetched is not None
    assert fetched.proposed_date.isoformat() == row["proposed_date"]
    assert [item.id for item in listed] == ["req-1"]
    assert ("tutor_id", "tutor-1") in table.last_filters
    assert ("status", "pending") in table.last_filters
    assert table.last_order == ("created_at", False)
    assert store.get_request("missing") is None


def test_update_request_sends_guard_and_session() -> None:
    client = FakeSupabaseClient()
    request = new_request(make_draft(), "req-1", NOW)
    approved, session = approve_request(request, "tutor-1", NOW)
    client.rpc_results["commit_request_change"] = [
        {
            "request": to_row(approved),
            "session": to_row(session),
            "applied": True,
            "notifications": [],
        }
    ]

    commit = SupabaseSessionStore(client).update_request(
        approved, {"status": SessionStatus.PENDING}, session, []
    )

    [(name, params)] = client.rpc_calls
    assert name == "commit_request_change"
    assert params["p_expected"] == {"status": "pending"}
    assert params["p_patch"]["status"] == "approved"  # type: ignore[index]
    assert params["p_session"]["id"] == "req-1"  # type: ignore[index]
    assert commit.applied
    assert commit.session is not None
    assert commit.session.status is SessionStatus.APPROVED


def test_update_request_reports_stale_guard() -> None:
    client = FakeSupabaseClient()
    request = new_request(make_draft(), "req-1", NOW)
    approved, _ = approve_request(request, "tutor-1", NOW)
    client.rpc_results["commit_request_change"] = [
        {"request": to_row(approved), "session": None, "applied": False}
    ]

    commit = SupabaseSessionStore(client).update_request(
        approved, {"status": SessionStatus.PENDING}, None, []
    )

    assert not commit.applied
    assert commit.session is None
    assert commit.notifications == []


def test_update_unknown_session_is_not_found() -> None:
    client = FakeSupabaseClient()
    _, session = approve_request(new_request(make_draft(), "req-1", NOW), "t", NOW)

    with pytest.raises(RecordNotFound):
        SupabaseSessionStore(client).update_session(
            session, {"status": SessionStatus.APPROVED}, []
        )


def test_list_sessions_filters_by_side() -> None:
    client = FakeSupabaseClient()
    table = client.table("sessions")
    store = SupabaseSessionStore(client)

    store.list_sessions("tutor-1", ActorRole.TUTOR)
    store.list_sessions("ops-1")

    assert table.last_filters == [
        ("tutor_id", "tutor-1"),
        ("or", "student_id.eq.ops-1,tutor_id.eq.ops-1"),
    ]


def test_notifications_roundtrip() -> None:
    client = FakeSupabaseClient()
    table = client.table("notifications")
    table.queue("insert", [_notification_row("student-1")])
    table.queue("select", [_notification_row("student-1")])
    table.queue("update", [_notification_row("student-1", is_read=True)])
    table.queue("update", [_notification_row("a"), _notification_row("b")])
    store = SupabaseSessionStore(client)

    created = store.create_notification(
        NotificationDraft(
            recipient_id="student-1",
            type=NotificationType.SYSTEM,
            title="Hello",
            message="Welcome aboard",
        )
    )
    listed = store.list_notifications("student-1")
    marked = store.mark_notification_read("notif-1")
    count = store.mark_all_notifications_read("student-1")

    assert created.id == "notif-1"
    assert [item.id for item in listed] == ["notif-1"]
    assert marked is not None
    assert marked.is_read
    assert count == 2
    assert ("is_read", False) in table.last_filters
    assert store.mark_notification_read("missing") is None


def _message_row(**overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "id": "msg-1",
        "session_id": "req-1",
        "sender_id": "student-1",
        "receiver_id": "tutor-1",
        "content": "See you at three",
        "message_type": "text",
        "is_read": False,
        "created_at": NOW.isoformat(),
        "read_at": None,
    }
    row.update(overrides)
    return row


def test_messages_table_operations() -> None:
    client = FakeSupabaseClient()
    table = client.table("messages")
    table.queue("insert", [_message_row()])
    table.queue("select", [_message_row(), _message_row(id="msg-2")])
    table.queue("update", [_message_row(is_read=True)])
    table.queue("select", [_message_row(id="msg-3")])
    store = SupabaseSessionStore(client)

    created = store.create_message(
        MessageDraft(
            session_id="req-1",
            sender_id="student-1",
            receiver_id="tutor-1",
            content="See you at three",
        )
    )
    inserted = table.last_payload
    listed = store.list_messages("req-1")
    order = table.last_order
    marked = store.mark_messages_read("req-1", "tutor-1")
    unread = store.count_unread_messages("tutor-1")

    assert created.id == "msg-1"
    assert isinstance(inserted, dict)
    assert inserted["receiver_id"] == "tutor-1"
    assert [item.id for item in listed] == ["msg-1", "msg-2"]
    assert order == ("created_at", False)
    assert marked == 1
    assert unread == 1
    assert table.last_filters[-2:] == [("receiver_id", "tutor-1"), ("is_read", False)]


def test_create_message_without_data_fails() -> None:
    client = FakeSupabaseClient()
    draft = MessageDraft(
        session_id="req-1", sender_id="student-1", receiver_id="tutor-1", content="Hi"
    )

    with pytest.raises(RuntimeError):
        SupabaseSessionStore(client).create_message(draft)
