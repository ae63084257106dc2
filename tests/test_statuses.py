"""Tests for the transition table and its evaluation functions."""

import itertools

import pytest

from tutor_sessions.domain.statuses import (
    REASON_REQUIRED,
    TERMINAL_STATUSES,
    TRANSITIONS,
    ActorRole,
    ReasonCode,
    SessionStatus,
    TransitionOutcome,
    evaluate_rating,
    evaluate_resolution,
    evaluate_transition,
)


DONE = SessionStatus.COMPLETED
Outcome = TransitionOutcome


def _reason_for(status: SessionStatus) -> str | None:
    if status in REASON_REQUIRED:
        return "Schedule conflict"
    return None


@pytest.mark.parametrize(
    ("current", "requested", "role"),
    list(itertools.product(SessionStatus, SessionStatus, ActorRole)),
)
def test_transition_allowed_iff_listed_in_table(
    current: SessionStatus, requested: SessionStatus, role: ActorRole
) -> None:
    decision = evaluate_transition(current, requested, role, _reason_for(requested))

    if current == requested or current in TERMINAL_STATUSES:
        assert decision.outcome is TransitionOutcome.NO_OP
        assert decision.status is current
        return
    allowed_roles = TRANSITIONS.get((current, requested))
    if allowed_roles is not None and role in allowed_roles:
        assert decision.outcome is TransitionOutcome.ALLOWED
        assert decision.status is requested
    else:
        assert decision.outcome is TransitionOutcome.REJECTED
        assert decision.status is current
        assert decision.reason_code in {
            ReasonCode.INVALID_TRANSITION,
            ReasonCode.ROLE_NOT_PERMITTED,
        }


def test_unknown_pair_is_invalid_transition() -> None:
    decision = evaluate_transition(
        SessionStatus.PENDING, SessionStatus.COMPLETED, ActorRole.TUTOR
    )

    assert decision.reason_code is ReasonCode.INVALID_TRANSITION


def test_student_cannot_approve() -> None:
    decision = evaluate_transition(
        SessionStatus.PENDING, SessionStatus.APPROVED, ActorRole.STUDENT
    )

    assert decision.reason_code is ReasonCode.ROLE_NOT_PERMITTED


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_rejection_requires_reason(reason: str | None) -> None:
    decision = evaluate_transition(
        SessionStatus.PENDING, SessionStatus.REJECTED, ActorRole.TUTOR, reason
    )

    assert decision.outcome is TransitionOutcome.REJECTED
    assert decision.reason_code is ReasonCode.REASON_REQUIRED


def test_either_participant_may_cancel_with_reason() -> None:
    for role in (ActorRole.STUDENT, ActorRole.TUTOR):
        for current in (SessionStatus.PENDING, SessionStatus.APPROVED):
            decision = evaluate_transition(
                current, SessionStatus.CANCELLED, role, "Feeling unwell"
            )
            assert decision.allowed


def test_cancel_in_progress_is_invalid() -> None:
    decision = evaluate_transition(
        SessionStatus.IN_PROGRESS,
        SessionStatus.CANCELLED,
        ActorRole.STUDENT,
        "Too late",
    )

    assert decision.reason_code is ReasonCode.INVALID_TRANSITION


def test_no_show_is_operator_only() -> None:
    tutor = evaluate_transition(
        SessionStatus.APPROVED, SessionStatus.NO_SHOW, ActorRole.TUTOR
    )
    operator = evaluate_transition(
        SessionStatus.IN_PROGRESS, SessionStatus.NO_SHOW, ActorRole.OPERATOR
    )

    assert tutor.reason_code is ReasonCode.ROLE_NOT_PERMITTED
    assert operator.allowed


def test_terminal_contradiction_is_no_op() -> None:
    decision = evaluate_transition(
        SessionStatus.COMPLETED, SessionStatus.CANCELLED, ActorRole.STUDENT, "late"
    )

    assert decision.no_op
    assert decision.status is SessionStatus.COMPLETED


def test_resolution_after_decision_is_no_op() -> None:
    decision = evaluate_resolution(
        SessionStatus.APPROVED, SessionStatus.REJECTED, ActorRole.TUTOR, "busy"
    )

    assert decision.no_op


def test_resolution_only_accepts_approve_or_reject() -> None:
    decision = evaluate_resolution(
        SessionStatus.PENDING, SessionStatus.COMPLETED, ActorRole.TUTOR
    )

    assert decision.reason_code is ReasonCode.INVALID_TRANSITION


@pytest.mark.parametrize(
    ("current", "role", "rating", "existing", "expected"),
    [
        (DONE, ActorRole.STUDENT, 5, None, Outcome.ALLOWED),
        (DONE, ActorRole.STUDENT, 4, 4, Outcome.NO_OP),
        (DONE, ActorRole.STUDENT, 3, 4, Outcome.REJECTED),
        (DONE, ActorRole.TUTOR, 5, None, Outcome.REJECTED),
        (SessionStatus.APPROVED, ActorRole.STUDENT, 5, None, Outcome.REJECTED),
        (DONE, ActorRole.STUDENT, 6, None, Outcome.REJECTED),
    ],
)
def test_evaluate_rating(
    current: SessionStatus,
    role: ActorRole,
    rating: int,
    existing: int | None,
    expected: TransitionOutcome,
) -> None:
    assert evaluate_rating(current, role, rating, existing).outcome is expected
