"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from tutor_sessions.api.messages import router as messages_router
from tutor_sessions.api.notifications import router as notifications_router
from tutor_sessions.api.realtime import router as realtime_router
from tutor_sessions.api.sessions import router as sessions_router
from tutor_sessions.app_logging import configure_logging
from tutor_sessions.containers import AppContainer
from tutor_sessions.domain.errors import (
    AccessDenied,
    LocalStorageFailure,
    PolicyRejection,
    RecordNotFound,
    ScheduleConflict,
)


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Starting tutor sessions API: environment=%s",
            app.state.container.settings.environment,
        )
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(sessions_router)
    app.include_router(notifications_router)
    app.include_router(messages_router)
    app.include_router(realtime_router)

    @app.exception_handler(PolicyRejection)
    async def policy_rejection_handler(
        request: Request, exc: PolicyRejection
    ) -> JSONResponse:
        return JSONResponse(
            status_code=_policy_status(exc),
            content={"code": exc.code, "message": exc.message},
        )

    @app.exception_handler(LocalStorageFailure)
    async def local_storage_handler(
        request: Request, exc: LocalStorageFailure
    ) -> JSONResponse:
        logger.error("Local storage failure on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_507_INSUFFICIENT_STORAGE,
            content={"code": "local_storage_failure", "message": str(exc)},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    return app


def _policy_status(exc: PolicyRejection) -> int:
    if isinstance(exc, RecordNotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, AccessDenied):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, ScheduleConflict):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST
