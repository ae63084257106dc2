"""Caller identity supplied by the upstream authentication layer."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Header, HTTPException, Request, status

from tutor_sessions.domain.errors import AccessDenied
from tutor_sessions.domain.models import Caller
from tutor_sessions.domain.statuses import ActorRole

if TYPE_CHECKING:
    from tutor_sessions.containers import AppContainer


def resolve_caller(
    user_id: str | None, role: str | None, operator_user_ids: set[str]
) -> Caller:
    """Build a caller from raw identity values.

    The operator role is only honoured for ids listed in the configuration.
    """
    if not user_id or not user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing user id"
        )
    try:
        actor_role = ActorRole((role or "").strip().lower())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user role"
        ) from exc
    if actor_role is ActorRole.OPERATOR and user_id not in operator_user_ids:
        raise AccessDenied("Operator role not granted")
    return Caller(user_id=user_id.strip(), role=actor_role)


async def get_caller(
    request: Request,
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Caller:
    """Resolve the caller from the ``X-User-Id`` and ``X-User-Role`` headers."""
    container: AppContainer = request.app.state.container
    return resolve_caller(x_user_id, x_user_role, container.operator_user_ids)
