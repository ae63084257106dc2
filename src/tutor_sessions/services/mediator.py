"""Persistence mediator: primary-first writes with classified mirror fallback."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import TypeVar

from tutor_sessions.domain.errors import (
    AccessDenied,
    PolicyRejection,
    RecordNotFound,
    ScheduleConflict,
)
from tutor_sessions.domain.events import NewSessionRequest, SessionStatusUpdated
from tutor_sessions.domain.models import Caller
from tutor_sessions.domain.notifications import Notification
from tutor_sessions.domain.sessions import (
    MAX_TEXT_LENGTH,
    ConfirmedSession,
    SessionRequest,
    SessionRequestDraft,
    approve_request,
    cancel_request,
    reject_request,
    slots_overlap,
    transition_session,
)
from tutor_sessions.domain.statuses import (
    ACTIVE_SESSION_STATUSES,
    ActorRole,
    ReasonCode,
    SessionStatus,
    TransitionDecision,
    evaluate_rating,
    evaluate_resolution,
    evaluate_transition,
)
from tutor_sessions.services.failures import (
    FailureClass,
    call_primary,
    classify_failure,
    describe_failure,
    read_primary_or,
)
from tutor_sessions.services.notifications import (
    NotificationService,
    approved_notice,
    cancelled_notice,
    rating_notice,
    rejected_notice,
    request_created_notice,
    session_status_notices,
)
from tutor_sessions.services.realtime import RealtimeHub, session_room, user_room
from tutor_sessions.services.store import SessionStore

T = TypeVar("T")
R = TypeVar("R", SessionRequest, ConfirmedSession)

_logger = logging.getLogger(__name__)


class PersistencePath(StrEnum):
    """Store that performed an operation's mutation."""

    PRIMARY = "primary"
    MIRROR = "mirror"


@dataclass(frozen=True)
class CreateRequest:
    draft: SessionRequestDraft


@dataclass(frozen=True)
class ResolveRequest:
    request_id: str
    decision: SessionStatus
    reason: str | None = None


@dataclass(frozen=True)
class UpdateSessionStatus:
    session_id: str
    status: SessionStatus
    reason: str | None = None


@dataclass(frozen=True)
class RateSession:
    session_id: str
    rating: int
    review: str | None = None


@dataclass(frozen=True)
class AttachMeeting:
    session_id: str
    meeting_reference: str


Operation = (
    CreateRequest | ResolveRequest | UpdateSessionStatus | RateSession | AttachMeeting
)


@dataclass(frozen=True)
class OperationResult:
    """Canonical records after an operation, and whether it changed anything.

    ``changed`` is false for stale operations that were absorbed as no-ops.
    """

    path: PersistencePath
    changed: bool
    request: SessionRequest | None = None
    session: ConfirmedSession | None = None
    notifications: list[Notification] = field(default_factory=list)
    status_reason: str | None = None


_REJECTION_MESSAGES = {
    ReasonCode.INVALID_TRANSITION: "Cannot change status from {current} to {requested}",
    ReasonCode.ROLE_NOT_PERMITTED: "You do not have permission to perform this action",
    ReasonCode.REASON_REQUIRED: "A reason is required when status is {requested}",
    ReasonCode.NOT_RATEABLE: "Can only rate completed sessions",
    ReasonCode.ALREADY_RATED: "Session already rated",
    ReasonCode.INVALID_RATING: "Rating must be between 1 and 5",
}


def participant_role(
    record: SessionRequest | ConfirmedSession, caller: Caller
) -> ActorRole:
    """Return the side the caller takes on a record.

    Operators act on any record; everyone else must be one of its two
    participants.
    """
    if caller.role is ActorRole.OPERATOR:
        return ActorRole.OPERATOR
    if caller.user_id == record.student_id:
        return ActorRole.STUDENT
    if caller.user_id == record.tutor_id:
        return ActorRole.TUTOR
    raise AccessDenied()


def raise_if_rejected(
    decision: TransitionDecision, requested: SessionStatus | None = None
) -> None:
    """Turn a rejected decision into a ``PolicyRejection``."""
    if decision.allowed or decision.no_op:
        return
    code = decision.reason_code or ReasonCode.INVALID_TRANSITION
    template = _REJECTION_MESSAGES[code]
    raise PolicyRejection(
        code.value,
        template.format(current=decision.status, requested=requested),
    )


@dataclass
class PersistenceMediator:
    """Runs every lifecycle operation against exactly one store.

    The primary store is tried first. Only a failure classified as
    unavailable sends the same operation to the mirror; policy failures
    propagate and unclassified ones are raised as they are. Side effects
    (realtime events and notification pushes) are triggered once, after
    the store that performed the mutation has committed.
    """

    primary: SessionStore
    mirror: SessionStore
    hub: RealtimeHub
    notifications: NotificationService
    primary_timeout_seconds: float = 10.0

    async def submit(self, operation: Operation, caller: Caller) -> OperationResult:
        """Perform an operation and announce its effects."""
        label = type(operation).__name__
        try:
            result = await call_primary(
                lambda: self._perform(
                    self.primary, PersistencePath.PRIMARY, operation, caller
                ),
                timeout=self.primary_timeout_seconds,
            )
        except Exception as exc:
            failure = classify_failure(exc)
            if failure is FailureClass.POLICY:
                if isinstance(exc, PolicyRejection):
                    raise
                raise PolicyRejection("rejected", describe_failure(exc)) from exc
            if failure is not FailureClass.UNAVAILABLE:
                raise
            _logger.warning(
                "Primary unavailable for %s, using mirror: %s",
                label,
                describe_failure(exc),
            )
            result = await asyncio.to_thread(
                self._perform, self.mirror, PersistencePath.MIRROR, operation, caller
            )
        if result.changed:
            _logger.info("%s committed via %s", label, result.path)
            self._announce(operation, result, caller)
        else:
            _logger.info("%s was a stale no-op via %s", label, result.path)
        return result

    async def get_request(self, request_id: str, caller: Caller) -> SessionRequest:
        """Return a request the caller takes part in."""
        request = await self._find(lambda store: store.get_request(request_id))
        if request is None:
            raise RecordNotFound("Session request", request_id)
        participant_role(request, caller)
        return request

    async def get_session(self, session_id: str, caller: Caller) -> ConfirmedSession:
        """Return a session the caller takes part in."""
        session = await self._find(lambda store: store.get_session(session_id))
        if session is None:
            raise RecordNotFound("Session", session_id)
        participant_role(session, caller)
        return session

    async def list_requests_for(
        self, caller: Caller, status: SessionStatus | None = None
    ) -> list[SessionRequest]:
        """List a tutor's incoming or a student's outgoing requests.

        Tutors see pending requests unless another status is asked for.
        """
        if caller.role is ActorRole.TUTOR:
            items = await self._merge(
                lambda store: store.list_requests(
                    tutor_id=caller.user_id, status=status or SessionStatus.PENDING
                )
            )
        else:
            items = await self._merge(
                lambda store: store.list_requests(
                    student_id=caller.user_id, status=status
                )
            )
        return sorted(items, key=lambda item: item.created_at)

    async def list_sessions_for(
        self, caller: Caller, status: SessionStatus | None = None
    ) -> list[ConfirmedSession]:
        """List the caller's confirmed sessions, oldest first."""
        role = caller.role if caller.role is not ActorRole.OPERATOR else None
        items = await self._merge(
            lambda store: store.list_sessions(caller.user_id, role)
        )
        if status is not None:
            items = [item for item in items if item.status == status]
        return sorted(items, key=lambda item: item.created_at)

    async def current_status(self, record_id: str) -> SessionStatus | None:
        """Return the latest stored status of a request or its session."""
        session = await self._find(lambda store: store.get_session(record_id))
        if session is not None:
            return session.status
        request = await self._find(lambda store: store.get_request(record_id))
        return request.status if request is not None else None

    def _perform(
        self,
        store: SessionStore,
        path: PersistencePath,
        operation: Operation,
        caller: Caller,
    ) -> OperationResult:
        now = datetime.now(tz=UTC)
        if isinstance(operation, CreateRequest):
            return self._create_request(store, path, operation, caller, now)
        if isinstance(operation, ResolveRequest):
            request = _require(
                store.get_request(operation.request_id), operation.request_id
            )
            return self._resolve(
                store, path, request, operation.decision, operation.reason, caller, now
            )
        if isinstance(operation, UpdateSessionStatus):
            return self._update_status(store, path, operation, caller, now)
        if isinstance(operation, RateSession):
            return self._rate(store, path, operation, caller, now)
        if isinstance(operation, AttachMeeting):
            return self._attach_meeting(store, path, operation, caller)
        raise TypeError(f"Unsupported operation: {operation!r}")

    def _create_request(
        self,
        store: SessionStore,
        path: PersistencePath,
        operation: CreateRequest,
        caller: Caller,
        now: datetime,
    ) -> OperationResult:
        draft = operation.draft
        if caller.role is not ActorRole.STUDENT or draft.student_id != caller.user_id:
            raise AccessDenied("Only students can create session requests")
        draft.validate(now)
        if _has_conflict(store, draft):
            raise ScheduleConflict()
        commit = store.create_request(draft, request_created_notice(draft))
        return OperationResult(
            path=path,
            changed=commit.applied,
            request=commit.request,
            notifications=commit.notifications,
        )

    def _resolve(
        self,
        store: SessionStore,
        path: PersistencePath,
        request: SessionRequest,
        decision_status: SessionStatus,
        reason: str | None,
        caller: Caller,
        now: datetime,
    ) -> OperationResult:
        if decision_status not in {SessionStatus.APPROVED, SessionStatus.REJECTED}:
            raise PolicyRejection(
                ReasonCode.INVALID_TRANSITION.value,
                "Invalid status. Must be approved or rejected",
            )
        role = participant_role(request, caller)
        decision = evaluate_resolution(request.status, decision_status, role, reason)
        raise_if_rejected(decision, decision_status)
        if decision.no_op:
            return OperationResult(path=path, changed=False, request=request)
        session = None
        if decision_status is SessionStatus.APPROVED:
            updated, session = approve_request(request, caller.user_id, now)
            notices = [approved_notice(request)]
        else:
            updated = reject_request(request, caller.user_id, reason or "", now)
            notices = [rejected_notice(request, reason or "")]
        commit = store.update_request(
            updated, {"status": request.status}, session, notices
        )
        return OperationResult(
            path=path,
            changed=commit.applied,
            request=commit.request,
            session=commit.session,
            notifications=commit.notifications,
            status_reason=updated.rejection_reason,
        )

    def _update_status(
        self,
        store: SessionStore,
        path: PersistencePath,
        operation: UpdateSessionStatus,
        caller: Caller,
        now: datetime,
    ) -> OperationResult:
        session = store.get_session(operation.session_id)
        if session is None:
            request = _require(
                store.get_request(operation.session_id), operation.session_id
            )
            return self._update_request_status(
                store, path, request, operation, caller, now
            )
        role = participant_role(session, caller)
        decision = evaluate_transition(
            session.status, operation.status, role, operation.reason
        )
        raise_if_rejected(decision, operation.status)
        if decision.no_op:
            return OperationResult(path=path, changed=False, session=session)
        updated = transition_session(
            session, operation.status, caller.user_id, now, operation.reason
        )
        notices = session_status_notices(
            session, operation.status, role, operation.reason
        )
        commit = store.update_session(updated, {"status": session.status}, notices)
        return OperationResult(
            path=path,
            changed=commit.applied,
            session=commit.session,
            notifications=commit.notifications,
            status_reason=updated.cancellation_reason,
        )

    def _update_request_status(
        self,
        store: SessionStore,
        path: PersistencePath,
        request: SessionRequest,
        operation: UpdateSessionStatus,
        caller: Caller,
        now: datetime,
    ) -> OperationResult:
        if operation.status in {SessionStatus.APPROVED, SessionStatus.REJECTED}:
            return self._resolve(
                store, path, request, operation.status, operation.reason, caller, now
            )
        role = participant_role(request, caller)
        decision = evaluate_transition(
            request.status, operation.status, role, operation.reason
        )
        raise_if_rejected(decision, operation.status)
        if decision.no_op:
            return OperationResult(path=path, changed=False, request=request)
        updated = cancel_request(request, caller.user_id, operation.reason or "", now)
        commit = store.update_request(
            updated,
            {"status": request.status},
            None,
            [cancelled_notice(request, role, operation.reason or "")],
        )
        return OperationResult(
            path=path,
            changed=commit.applied,
            request=commit.request,
            notifications=commit.notifications,
            status_reason=updated.cancellation_reason,
        )

    def _rate(
        self,
        store: SessionStore,
        path: PersistencePath,
        operation: RateSession,
        caller: Caller,
        now: datetime,
    ) -> OperationResult:
        session = _require_session(store, operation.session_id)
        role = participant_role(session, caller)
        decision = evaluate_rating(
            session.status, role, operation.rating, session.rating
        )
        raise_if_rejected(decision)
        if decision.no_op:
            return OperationResult(path=path, changed=False, session=session)
        review = (operation.review or "").strip() or None
        if review and len(review) > MAX_TEXT_LENGTH:
            raise PolicyRejection(
                "review_too_long", "Review cannot exceed 500 characters"
            )
        updated = replace(
            session,
            rating=operation.rating,
            review=review,
            rated_at=now,
            updated_at=now,
        )
        commit = store.update_session(
            updated,
            {"status": SessionStatus.COMPLETED, "rating": None},
            [rating_notice(session, operation.rating)],
        )
        return OperationResult(
            path=path,
            changed=commit.applied,
            session=commit.session,
            notifications=commit.notifications,
        )

    def _attach_meeting(
        self,
        store: SessionStore,
        path: PersistencePath,
        operation: AttachMeeting,
        caller: Caller,
    ) -> OperationResult:
        session = _require_session(store, operation.session_id)
        if not session.has_participant(caller.user_id):
            raise AccessDenied()
        if session.status not in ACTIVE_SESSION_STATUSES:
            raise PolicyRejection(
                "meeting_unavailable",
                "Video calls are only available for approved or in-progress sessions",
            )
        if session.meeting_reference:
            return OperationResult(path=path, changed=False, session=session)
        updated = replace(session, meeting_reference=operation.meeting_reference)
        commit = store.update_session(updated, {"meeting_reference": None}, [])
        return OperationResult(
            path=path, changed=commit.applied, session=commit.session
        )

    def _announce(
        self, operation: Operation, result: OperationResult, caller: Caller
    ) -> None:
        if isinstance(operation, CreateRequest) and result.request is not None:
            request = result.request
            self.hub.emit_to_user(
                request.tutor_id,
                NewSessionRequest(
                    request_id=request.id,
                    student_id=request.student_id,
                    student_name=request.student_name,
                    subject=request.subject,
                    proposed_date=request.proposed_date,
                    start_time=request.start_time,
                    end_time=request.end_time,
                ),
            )
        elif isinstance(operation, ResolveRequest | UpdateSessionStatus):
            record = result.session or result.request
            if record is not None:
                self._broadcast_status(record, caller, result.status_reason)
        self.notifications.publish(result.notifications)

    def _broadcast_status(
        self,
        record: SessionRequest | ConfirmedSession,
        caller: Caller,
        reason: str | None,
    ) -> None:
        event = SessionStatusUpdated(
            session_id=record.id,
            status=record.status.value,
            updated_by=caller.user_id,
            reason=reason,
        )
        room = session_room(record.id)
        self.hub.emit(room, event)
        for user_id in (record.student_id, record.tutor_id):
            if not self.hub.is_member(user_id, room):
                self.hub.emit(user_room(user_id), event)

    async def _find(self, func: Callable[[SessionStore], T | None]) -> T | None:
        found = await read_primary_or(
            lambda: func(self.primary),
            timeout=self.primary_timeout_seconds,
            default=None,
            label="record lookup",
        )
        if found is not None:
            return found
        return await asyncio.to_thread(func, self.mirror)

    async def _merge(self, func: Callable[[SessionStore], list[R]]) -> list[R]:
        primary_items = await read_primary_or(
            lambda: func(self.primary),
            timeout=self.primary_timeout_seconds,
            default=[],
            label="record listing",
        )
        mirror_items = await asyncio.to_thread(func, self.mirror)
        merged = {item.id: item for item in mirror_items}
        merged.update({item.id: item for item in primary_items})
        return list(merged.values())


def _require(request: SessionRequest | None, request_id: str) -> SessionRequest:
    if request is None:
        raise RecordNotFound("Session request", request_id)
    return request


def _has_conflict(store: SessionStore, draft: SessionRequestDraft) -> bool:
    """Whether either participant already holds an overlapping open booking."""
    slot = (draft.start_time, draft.end_time)
    booked: list[SessionRequest | ConfirmedSession] = [
        *store.list_requests(student_id=draft.student_id, status=SessionStatus.PENDING),
        *store.list_requests(tutor_id=draft.tutor_id, status=SessionStatus.PENDING),
    ]
    booked += [
        session
        for session in [
            *store.list_sessions(draft.student_id, ActorRole.STUDENT),
            *store.list_sessions(draft.tutor_id, ActorRole.TUTOR),
        ]
        if session.status in ACTIVE_SESSION_STATUSES
    ]
    return any(
        _booked_date(record) == draft.proposed_date
        and slots_overlap(slot, (record.start_time, record.end_time))
        for record in booked
    )


def _booked_date(record: SessionRequest | ConfirmedSession) -> date:
    if isinstance(record, ConfirmedSession):
        return record.session_date
    return record.proposed_date


def _require_session(store: SessionStore, session_id: str) -> ConfirmedSession:
    session = store.get_session(session_id)
    if session is None:
        raise RecordNotFound("Session", session_id)
    return session
