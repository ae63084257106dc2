"""Websocket transport for the realtime channel, plus presence."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING
from uuid import uuid4

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect

from tutor_sessions.api.identity import resolve_caller
from tutor_sessions.app_logging import bind_connection
from tutor_sessions.domain.errors import PolicyRejection

if TYPE_CHECKING:
    from tutor_sessions.containers import AppContainer
    from tutor_sessions.domain.models import Caller

router = APIRouter(tags=["realtime"])
_logger = logging.getLogger(__name__)

_POLICY_VIOLATION = 1008


@dataclass
class QueuedConnection:
    """Connection whose outbound messages are drained by a writer task."""

    user_id: str
    connection_id: str = field(default_factory=lambda: uuid4().hex)
    queue: asyncio.Queue[dict[str, object]] = field(default_factory=asyncio.Queue)

    def deliver(self, message: dict[str, object]) -> None:
        self.queue.put_nowait(message)


@router.websocket("/ws")
async def realtime_socket(
    websocket: WebSocket, user_id: str | None = None, role: str | None = None
) -> None:
    """Bidirectional event channel for one authenticated user."""
    container: AppContainer = websocket.app.state.container
    try:
        caller = resolve_caller(user_id, role, container.operator_user_ids)
    except (HTTPException, PolicyRejection):
        await websocket.close(code=_POLICY_VIOLATION)
        return
    await websocket.accept()
    connection = QueuedConnection(user_id=caller.user_id)
    with bind_connection(connection.connection_id):
        await _serve(websocket, container, caller, connection)


async def _serve(
    websocket: WebSocket,
    container: AppContainer,
    caller: Caller,
    connection: QueuedConnection,
) -> None:
    channel = container.gateway.open(connection)
    writer = asyncio.create_task(_drain(websocket, connection.queue))
    _logger.info("Realtime connection opened: user_id=%s", caller.user_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                channel.error("Message must be valid JSON")
                continue
            await container.gateway.handle(channel, caller, message)
    except WebSocketDisconnect:
        _logger.info("Realtime connection closed: user_id=%s", caller.user_id)
    finally:
        await channel.close()
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer


@router.get("/presence")
async def presence(request: Request) -> dict[str, object]:
    """List connected users and their last known status."""
    container: AppContainer = request.app.state.container
    return {"users": [asdict(item) for item in container.hub.presence()]}


async def _drain(websocket: WebSocket, queue: asyncio.Queue[dict[str, object]]) -> None:
    while True:
        message = await queue.get()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as exc:
            _logger.warning("Realtime send failed: %s", exc)
            return
