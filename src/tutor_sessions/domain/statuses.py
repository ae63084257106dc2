"""Lifecycle status vocabulary and the role-gated transition table."""

from dataclasses import dataclass
from enum import StrEnum


class SessionStatus(StrEnum):
    """Lifecycle state shared by session requests and confirmed sessions."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class ActorRole(StrEnum):
    """Role of the caller attempting a transition."""

    STUDENT = "student"
    TUTOR = "tutor"
    OPERATOR = "operator"


class TransitionOutcome(StrEnum):
    """Result category of a transition evaluation."""

    ALLOWED = "allowed"
    NO_OP = "no-op"
    REJECTED = "rejected"


class ReasonCode(StrEnum):
    """Stable reason codes for rejected transitions."""

    INVALID_TRANSITION = "invalid_transition"
    ROLE_NOT_PERMITTED = "role_not_permitted"
    REASON_REQUIRED = "reason_required"
    NOT_RATEABLE = "not_rateable"
    ALREADY_RATED = "already_rated"
    INVALID_RATING = "invalid_rating"


TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.REJECTED,
        SessionStatus.COMPLETED,
        SessionStatus.CANCELLED,
        SessionStatus.NO_SHOW,
    }
)

ACTIVE_SESSION_STATUSES = frozenset(
    {SessionStatus.APPROVED, SessionStatus.IN_PROGRESS}
)

_PARTICIPANTS = frozenset({ActorRole.STUDENT, ActorRole.TUTOR})

TRANSITIONS: dict[tuple[SessionStatus, SessionStatus], frozenset[ActorRole]] = {
    (SessionStatus.PENDING, SessionStatus.APPROVED): frozenset({ActorRole.TUTOR}),
    (SessionStatus.PENDING, SessionStatus.REJECTED): frozenset({ActorRole.TUTOR}),
    (SessionStatus.PENDING, SessionStatus.CANCELLED): _PARTICIPANTS,
    (SessionStatus.APPROVED, SessionStatus.IN_PROGRESS): frozenset({ActorRole.TUTOR}),
    (SessionStatus.APPROVED, SessionStatus.CANCELLED): _PARTICIPANTS,
    (SessionStatus.APPROVED, SessionStatus.NO_SHOW): frozenset({ActorRole.OPERATOR}),
    (SessionStatus.IN_PROGRESS, SessionStatus.COMPLETED): frozenset(
        {ActorRole.TUTOR}
    ),
    (SessionStatus.IN_PROGRESS, SessionStatus.NO_SHOW): frozenset(
        {ActorRole.OPERATOR}
    ),
}

REASON_REQUIRED = frozenset({SessionStatus.REJECTED, SessionStatus.CANCELLED})

STATUS_LABELS = {
    SessionStatus.PENDING: "Pending Approval",
    SessionStatus.APPROVED: "Approved",
    SessionStatus.REJECTED: "Rejected",
    SessionStatus.IN_PROGRESS: "In Progress",
    SessionStatus.COMPLETED: "Completed",
    SessionStatus.CANCELLED: "Cancelled",
    SessionStatus.NO_SHOW: "No Show",
}


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of evaluating a requested status change."""

    outcome: TransitionOutcome
    status: SessionStatus
    reason_code: ReasonCode | None = None

    @property
    def allowed(self) -> bool:
        return self.outcome is TransitionOutcome.ALLOWED

    @property
    def no_op(self) -> bool:
        return self.outcome is TransitionOutcome.NO_OP


def evaluate_transition(
    current: SessionStatus,
    requested: SessionStatus,
    role: ActorRole,
    reason: str | None = None,
) -> TransitionDecision:
    """Decide whether ``role`` may move a record from ``current`` to ``requested``.

    Re-applying the current status, or contradicting a terminal one, is a
    no-op so duplicate deliveries from either persistence path are absorbed.
    """
    if current == requested or current in TERMINAL_STATUSES:
        return TransitionDecision(TransitionOutcome.NO_OP, current)
    allowed_roles = TRANSITIONS.get((current, requested))
    if allowed_roles is None:
        return _rejected(current, ReasonCode.INVALID_TRANSITION)
    if role not in allowed_roles:
        return _rejected(current, ReasonCode.ROLE_NOT_PERMITTED)
    if requested in REASON_REQUIRED and not (reason and reason.strip()):
        return _rejected(current, ReasonCode.REASON_REQUIRED)
    return TransitionDecision(TransitionOutcome.ALLOWED, requested)


def evaluate_resolution(
    current: SessionStatus,
    requested: SessionStatus,
    role: ActorRole,
    reason: str | None = None,
) -> TransitionDecision:
    """Evaluate an approve/reject decision on a session request.

    A request is final once it leaves ``pending``, so any later decision,
    matching or contradicting, is a stale no-op.
    """
    if requested not in {SessionStatus.APPROVED, SessionStatus.REJECTED}:
        return _rejected(current, ReasonCode.INVALID_TRANSITION)
    if current is not SessionStatus.PENDING:
        return TransitionDecision(TransitionOutcome.NO_OP, current)
    return evaluate_transition(current, requested, role, reason)


def evaluate_rating(
    current: SessionStatus,
    role: ActorRole,
    rating: int,
    existing_rating: int | None,
) -> TransitionDecision:
    """Decide whether a student may attach ``rating`` to a session."""
    if not 1 <= rating <= 5:  # noqa: PLR2004
        return _rejected(current, ReasonCode.INVALID_RATING)
    if role is not ActorRole.STUDENT:
        return _rejected(current, ReasonCode.ROLE_NOT_PERMITTED)
    if current is not SessionStatus.COMPLETED:
        return _rejected(current, ReasonCode.NOT_RATEABLE)
    if existing_rating is not None:
        if existing_rating == rating:
            return TransitionDecision(TransitionOutcome.NO_OP, current)
        return _rejected(current, ReasonCode.ALREADY_RATED)
    return TransitionDecision(TransitionOutcome.ALLOWED, current)


def _rejected(current: SessionStatus, code: ReasonCode) -> TransitionDecision:
    return TransitionDecision(TransitionOutcome.REJECTED, current, code)
