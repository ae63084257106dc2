"""Chat message endpoints for session participants."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request, status

from tutor_sessions.api.identity import get_caller
from tutor_sessions.api.schemas import ChatMessageCreate  # noqa: TC001
from tutor_sessions.domain.models import Caller  # noqa: TC001

if TYPE_CHECKING:
    from tutor_sessions.containers import AppContainer

router = APIRouter(tags=["messages"])


@router.get("/sessions/{session_id}/messages")
async def list_messages(
    session_id: str, request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, object]:
    """Return the session's chat history, oldest first.

    Messages addressed to the caller are marked read.
    """
    container: AppContainer = request.app.state.container
    messages = await container.message_service.history(session_id, caller)
    return {"messages": messages}


@router.post("/sessions/{session_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    session_id: str,
    payload: ChatMessageCreate,
    request: Request,
    caller: Caller = Depends(get_caller),
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    message = await container.message_service.send(
        session_id, caller, payload.content, payload.message_type
    )
    return {"message": message}


@router.get("/messages/unread-count")
async def unread_count(
    request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, int]:
    container: AppContainer = request.app.state.container
    count = await container.message_service.unread_count_for(caller.user_id)
    return {"unread_count": count}
