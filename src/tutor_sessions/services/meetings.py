"""Meeting references for confirmed sessions."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from tutor_sessions.domain.models import Caller
from tutor_sessions.services.mediator import AttachMeeting, PersistenceMediator

_logger = logging.getLogger(__name__)


class MeetingProvider(Protocol):
    """External service that hands out joinable meeting rooms."""

    async def create_room(self, session_id: str) -> str:
        """Create a room for a session and return its URL."""


@dataclass
class MeetingService:
    """Attaches a meeting reference to a session once and reuses it."""

    mediator: PersistenceMediator
    provider: MeetingProvider
    fallback: MeetingProvider

    async def meeting_for(self, session_id: str, caller: Caller) -> str:
        """Return the session's meeting reference, creating it on first use."""
        session = await self.mediator.get_session(session_id, caller)
        if session.meeting_reference:
            return session.meeting_reference
        try:
            reference = await self.provider.create_room(session_id)
        except httpx.HTTPError as exc:
            _logger.warning(
                "Meeting provider failed for session %s, using fallback room: %s",
                session_id,
                exc,
            )
            reference = await self.fallback.create_room(session_id)
        result = await self.mediator.submit(
            AttachMeeting(session_id=session_id, meeting_reference=reference),
            caller,
        )
        if result.session is not None and result.session.meeting_reference:
            return result.session.meeting_reference
        return reference
