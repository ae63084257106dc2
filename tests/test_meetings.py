"""Tests for meeting room providers and the meeting service."""

import asyncio
import json

import httpx
import pytest

from tests.conftest import OUTSIDER, STUDENT, TUTOR, make_draft
from tutor_sessions.adapters.daily_client import HttpxDailyClient, StaticMeetingProvider
from tutor_sessions.domain.errors import AccessDenied
from tutor_sessions.domain.statuses import SessionStatus
from tutor_sessions.services.mediator import (
    CreateRequest,
    PersistenceMediator,
    ResolveRequest,
)
from tutor_sessions.services.meetings import MeetingService


class _CountingProvider:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def create_room(self, session_id: str) -> str:
        self.calls.append(session_id)
        return f"https://rooms.example.test/{session_id}"


class _FailingProvider:
    async def create_room(self, session_id: str) -> str:
        raise httpx.ConnectError("daily is down")


def _approved_session(mediator: PersistenceMediator) -> str:
    created = asyncio.run(mediator.submit(CreateRequest(make_draft()), STUDENT))
    assert created.request is not None
    asyncio.run(
        mediator.submit(
            ResolveRequest(created.request.id, SessionStatus.APPROVED), TUTOR
        )
    )
    return created.request.id


def test_daily_client_creates_private_room() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"url": "https://tm.daily.co/session-s-1"})

    transport = httpx.MockTransport(handler)
    client = HttpxDailyClient(
        api_key="daily-key",
        base_url="https://api.daily.co/v1",
        http_client=httpx.AsyncClient(transport=transport),
    )

    url = asyncio.run(client.create_room("s-1"))

    assert url == "https://tm.daily.co/session-s-1"
    [request] = seen
    assert request.url.path == "/v1/rooms"
    assert request.headers["Authorization"] == "Bearer daily-key"
    body = json.loads(request.content)
    assert body["name"] == "session-s-1"
    assert body["privacy"] == "private"
    assert body["properties"]["max_participants"] == 2


def test_daily_client_raises_on_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "authentication-error"})

    client = HttpxDailyClient(
        api_key="bad",
        base_url="https://api.daily.co/v1",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.create_room("s-1"))


def test_static_provider_is_deterministic() -> None:
    provider = StaticMeetingProvider("meet.example.test")

    assert (
        asyncio.run(provider.create_room("s-1"))
        == "https://meet.example.test/session-s-1"
    )


def test_meeting_is_created_once(mediator: PersistenceMediator) -> None:
    session_id = _approved_session(mediator)
    provider = _CountingProvider()
    service = MeetingService(
        mediator=mediator,
        provider=provider,
        fallback=StaticMeetingProvider("meet.example.test"),
    )

    first = asyncio.run(service.meeting_for(session_id, TUTOR))
    second = asyncio.run(service.meeting_for(session_id, STUDENT))

    assert first == second == f"https://rooms.example.test/{session_id}"
    assert provider.calls == [session_id]


def test_meeting_falls_back_when_provider_fails(
    mediator: PersistenceMediator,
) -> None:
    session_id = _approved_session(mediator)
    service = MeetingService(
        mediator=mediator,
        provider=_FailingProvider(),
        fallback=StaticMeetingProvider("meet.example.test"),
    )

    reference = asyncio.run(service.meeting_for(session_id, STUDENT))

    assert reference == f"https://meet.example.test/session-{session_id}"


def test_meeting_requires_participant(mediator: PersistenceMediator) -> None:
    session_id = _approved_session(mediator)
    service = MeetingService(
        mediator=mediator,
        provider=_CountingProvider(),
        fallback=StaticMeetingProvider("meet.example.test"),
    )

    with pytest.raises(AccessDenied):
        asyncio.run(service.meeting_for(session_id, OUTSIDER))
