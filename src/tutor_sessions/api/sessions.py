"""Session request and confirmed session endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query, Request, status

from tutor_sessions.api.identity import get_caller
from tutor_sessions.api.schemas import (  # noqa: TC001
    RatingSubmission,
    RequestDecision,
    SessionRequestCreate,
    StatusChange,
)
from tutor_sessions.domain.models import Caller  # noqa: TC001
from tutor_sessions.domain.sessions import SessionRequestDraft
from tutor_sessions.domain.statuses import SessionStatus  # noqa: TC001
from tutor_sessions.services.mediator import (
    CreateRequest,
    RateSession,
    ResolveRequest,
    UpdateSessionStatus,
)

if TYPE_CHECKING:
    from tutor_sessions.containers import AppContainer

router = APIRouter(tags=["sessions"])


@router.post("/session-requests", status_code=status.HTTP_201_CREATED)
async def create_session_request(
    payload: SessionRequestCreate,
    request: Request,
    caller: Caller = Depends(get_caller),
) -> dict[str, object]:
    """Create a pending session request as the calling student."""
    container: AppContainer = request.app.state.container
    draft = SessionRequestDraft(
        student_id=caller.user_id,
        student_name=payload.student_name,
        tutor_id=payload.tutor_id,
        tutor_name=payload.tutor_name,
        subject=payload.subject,
        proposed_date=payload.proposed_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        duration_hours=payload.duration_hours,
        session_type=payload.session_type,
        hourly_rate=payload.hourly_rate,
        description=payload.description,
    )
    result = await container.mediator.submit(CreateRequest(draft), caller)
    return {"request": result.request}


@router.get("/session-requests")
async def list_session_requests(
    request: Request,
    status_filter: SessionStatus | None = Query(default=None, alias="status"),
    caller: Caller = Depends(get_caller),
) -> dict[str, object]:
    """List incoming requests for a tutor or outgoing requests for a student."""
    container: AppContainer = request.app.state.container
    items = await container.mediator.list_requests_for(caller, status_filter)
    return {"requests": items}


@router.get("/session-requests/{request_id}")
async def get_session_request(
    request_id: str, request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    return {"request": await container.mediator.get_request(request_id, caller)}


@router.put("/session-requests/{request_id}")
async def resolve_session_request(
    request_id: str,
    payload: RequestDecision,
    request: Request,
    caller: Caller = Depends(get_caller),
) -> dict[str, object]:
    """Approve or reject a pending request."""
    container: AppContainer = request.app.state.container
    result = await container.mediator.submit(
        ResolveRequest(
            request_id=request_id, decision=payload.status, reason=payload.reason
        ),
        caller,
    )
    return {
        "request": result.request,
        "session": result.session,
        "changed": result.changed,
    }


@router.get("/sessions")
async def list_sessions(
    request: Request,
    status_filter: SessionStatus | None = Query(default=None, alias="status"),
    caller: Caller = Depends(get_caller),
) -> dict[str, object]:
    """List the caller's confirmed sessions."""
    container: AppContainer = request.app.state.container
    items = await container.mediator.list_sessions_for(caller, status_filter)
    return {"sessions": items}


@router.get("/sessions/{session_id}")
async def get_session(
    session_id: str, request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, object]:
    container: AppContainer = request.app.state.container
    return {"session": await container.mediator.get_session(session_id, caller)}


@router.put("/sessions/{session_id}/status")
async def update_session_status(
    session_id: str,
    payload: StatusChange,
    request: Request,
    caller: Caller = Depends(get_caller),
) -> dict[str, object]:
    """Move a session (or a still-pending request) to a new status."""
    container: AppContainer = request.app.state.container
    result = await container.mediator.submit(
        UpdateSessionStatus(
            session_id=session_id, status=payload.status, reason=payload.reason
        ),
        caller,
    )
    return {
        "session": result.session,
        "request": result.request,
        "changed": result.changed,
    }


@router.post("/sessions/{session_id}/rate")
async def rate_session(
    session_id: str,
    payload: RatingSubmission,
    request: Request,
    caller: Caller = Depends(get_caller),
) -> dict[str, object]:
    """Rate a completed session as its student."""
    container: AppContainer = request.app.state.container
    result = await container.mediator.submit(
        RateSession(
            session_id=session_id, rating=payload.rating, review=payload.review
        ),
        caller,
    )
    return {"session": result.session, "changed": result.changed}


@router.post("/sessions/{session_id}/meeting")
async def session_meeting(
    session_id: str, request: Request, caller: Caller = Depends(get_caller)
) -> dict[str, str]:
    """Return the session's meeting reference, creating it on first use."""
    container: AppContainer = request.app.state.container
    reference = await container.meeting_service.meeting_for(session_id, caller)
    return {"meeting_reference": reference}
