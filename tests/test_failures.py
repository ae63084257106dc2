"""Tests for primary failure classification."""

import asyncio
import time

import httpx
import pytest
from postgrest.exceptions import APIError

from tutor_sessions.domain.errors import (
    AccessDenied,
    BackendUnavailable,
    PolicyRejection,
    RecordNotFound,
)
from tutor_sessions.services.failures import (
    FailureClass,
    call_primary,
    classify_failure,
    describe_failure,
    read_primary_or,
)


def _status_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.supabase.co/rest/v1/rpc/x")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("failed", request=request, response=response)


def _api_error(code: str) -> APIError:
    return APIError(
        {"message": f"error {code}", "code": code, "hint": None, "details": None}
    )


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (BackendUnavailable("down"), FailureClass.UNAVAILABLE),
        (TimeoutError(), FailureClass.UNAVAILABLE),
        (httpx.ConnectError("refused"), FailureClass.UNAVAILABLE),
        (httpx.ReadTimeout("slow"), FailureClass.UNAVAILABLE),
        (RecordNotFound("Session", "s-1"), FailureClass.UNAVAILABLE),
        (PolicyRejection("reason_required", "Reason required"), FailureClass.POLICY),
        (AccessDenied(), FailureClass.POLICY),
        (_status_error(404), FailureClass.UNAVAILABLE),
        (_status_error(429), FailureClass.UNAVAILABLE),
        (_status_error(503), FailureClass.UNAVAILABLE),
        (_status_error(400), FailureClass.POLICY),
        (_status_error(403), FailureClass.POLICY),
        (_api_error("PGRST116"), FailureClass.UNAVAILABLE),
        (_api_error("PGRST202"), FailureClass.UNAVAILABLE),
        (_api_error("42P01"), FailureClass.UNAVAILABLE),
        (_api_error("PGRST001"), FailureClass.UNAVAILABLE),
        (_api_error("53300"), FailureClass.UNAVAILABLE),
        (_api_error("57014"), FailureClass.UNAVAILABLE),
        (_api_error("23514"), FailureClass.POLICY),
        (_api_error("22P02"), FailureClass.POLICY),
        (_api_error("42501"), FailureClass.POLICY),
        (_api_error("P0001"), FailureClass.POLICY),
        (_api_error("500"), FailureClass.UNAVAILABLE),
        (ValueError("bug"), FailureClass.UNCLASSIFIED),
        (KeyError("status"), FailureClass.UNCLASSIFIED),
    ],
)
def test_classify_failure(exc: BaseException, expected: FailureClass) -> None:
    assert classify_failure(exc) is expected


def test_describe_failure_prefers_backend_message() -> None:
    assert describe_failure(_api_error("23514")) == "error 23514"
    assert describe_failure(TimeoutError()) == "TimeoutError"


def test_call_primary_times_out() -> None:
    with pytest.raises(TimeoutError):
        asyncio.run(call_primary(lambda: time.sleep(0.5), timeout=0.01))


def test_read_primary_or_absorbs_only_unavailable() -> None:
    def down() -> list[str]:
        raise BackendUnavailable("down")

    def rejected() -> list[str]:
        raise PolicyRejection("access_denied", "Access denied")

    assert asyncio.run(read_primary_or(down, timeout=1, default=[], label="t")) == []
    with pytest.raises(PolicyRejection):
        asyncio.run(read_primary_or(rejected, timeout=1, default=[], label="t"))
