"""Notification endpoints for the calling recipient."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request

from tutor_sessions.api.identity import get_caller
from tutor_sessions.domain.models import Caller  # noqa: TC001

if TYPE_CHECKING:
    from tutor_sessions.containers import AppContainer

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, object]:
    """Return the caller's notifications, newest first."""
    container: AppContainer = request.app.state.container
    items = await container.notification_service.list_for(caller.user_id)
    return {
        "notifications": items,
        "unread_count": sum(1 for item in items if not item.is_read),
    }


@router.get("/unread-count")
async def unread_count(
    request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, int]:
    container: AppContainer = request.app.state.container
    count = await container.notification_service.unread_count_for(caller.user_id)
    return {"unread_count": count}


@router.put("/mark-all-read")
async def mark_all_read(
    request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, int]:
    """Mark every unread notification of the caller read."""
    container: AppContainer = request.app.state.container
    updated = await container.notification_service.mark_all_read(caller.user_id)
    return {"updated": updated}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: str, request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    notification = await container.notification_service.mark_read_for(
        caller.user_id, notification_id
    )
    return {"notification": notification}
