"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from supabase import create_client

from tutor_sessions.adapters.daily_client import (
    HttpxDailyClient,
    StaticMeetingProvider,
)
from tutor_sessions.adapters.file_storage import JsonFileStorage
from tutor_sessions.adapters.mirror_store import MirrorSessionStore
from tutor_sessions.adapters.supabase_session_store import SupabaseSessionStore
from tutor_sessions.config import Settings, parse_operator_user_ids
from tutor_sessions.services.gateway import RealtimeGateway
from tutor_sessions.services.mediator import PersistenceMediator
from tutor_sessions.services.meetings import MeetingProvider, MeetingService
from tutor_sessions.services.messages import MessageService
from tutor_sessions.services.notifications import NotificationService
from tutor_sessions.services.realtime import RealtimeHub
from tutor_sessions.services.store import SessionStore


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    operator_user_ids: set[str]
    hub: RealtimeHub
    mediator: PersistenceMediator
    notification_service: NotificationService
    meeting_service: MeetingService
    message_service: MessageService
    gateway: RealtimeGateway
    close_resources: Callable[[], Awaitable[None]]


def build_container(
    settings: Settings | None = None,
    primary: SessionStore | None = None,
    mirror: SessionStore | None = None,
    meeting_provider: MeetingProvider | None = None,
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    if primary is None:
        supabase_client = create_client(
            resolved_settings.supabase_url, resolved_settings.supabase_service_key
        )
        primary = SupabaseSessionStore(supabase_client)
    if mirror is None:
        mirror = MirrorSessionStore(
            JsonFileStorage(
                path=Path(resolved_settings.mirror_store_path),
                max_bytes=resolved_settings.mirror_store_max_bytes,
            )
        )
    daily_client: HttpxDailyClient | None = None
    fallback_provider = StaticMeetingProvider(resolved_settings.meeting_domain)
    if meeting_provider is None:
        if resolved_settings.daily_api_key:
            daily_client = HttpxDailyClient.create(
                api_key=resolved_settings.daily_api_key,
                base_url=resolved_settings.daily_base_url,
            )
            meeting_provider = daily_client
        else:
            meeting_provider = fallback_provider
    timeout = resolved_settings.primary_timeout_seconds
    hub = RealtimeHub()
    notification_service = NotificationService(
        primary=primary,
        mirror=mirror,
        hub=hub,
        primary_timeout_seconds=timeout,
    )
    mediator = PersistenceMediator(
        primary=primary,
        mirror=mirror,
        hub=hub,
        notifications=notification_service,
        primary_timeout_seconds=timeout,
    )
    meeting_service = MeetingService(
        mediator=mediator,
        provider=meeting_provider,
        fallback=fallback_provider,
    )
    message_service = MessageService(
        primary=primary,
        mirror=mirror,
        hub=hub,
        mediator=mediator,
        notifications=notification_service,
        primary_timeout_seconds=timeout,
    )
    gateway = RealtimeGateway(
        hub=hub,
        mediator=mediator,
        notifications=notification_service,
        messages=message_service,
        typing_timeout_seconds=resolved_settings.typing_timeout_seconds,
        reconciliation_interval_seconds=(
            resolved_settings.reconciliation_interval_seconds
        ),
    )

    async def close_resources() -> None:
        if daily_client is not None:
            await daily_client.close()

    return AppContainer(
        settings=resolved_settings,
        operator_user_ids=parse_operator_user_ids(resolved_settings.operator_user_ids),
        hub=hub,
        mediator=mediator,
        notification_service=notification_service,
        meeting_service=meeting_service,
        message_service=message_service,
        gateway=gateway,
        close_resources=close_resources,
    )
