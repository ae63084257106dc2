"""Classification of primary backend failures."""

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import TypeVar

import httpx
from postgrest.exceptions import APIError

from tutor_sessions.domain.errors import (
    BackendUnavailable,
    PolicyRejection,
    RecordNotFound,
)

T = TypeVar("T")

_logger = logging.getLogger(__name__)

_MISSING_RESOURCE_CODES = {"PGRST116", "PGRST202", "PGRST205", "42P01", "42883"}
_CONNECTION_CODES = {"PGRST000", "PGRST001", "PGRST002", "PGRST003"}
_UNAVAILABLE_SQLSTATE_CLASSES = ("08", "53", "57", "58")
_POLICY_SQLSTATE_CLASSES = ("22", "23", "P0")
_UNAVAILABLE_HTTP_STATUSES = {404, 408, 429}


class FailureClass(StrEnum):
    """How a failed primary attempt is handled."""

    POLICY = "policy"
    UNAVAILABLE = "unavailable"
    UNCLASSIFIED = "unclassified"


def classify_failure(exc: BaseException) -> FailureClass:
    """Map an exception raised on the primary path to a failure class."""
    if isinstance(exc, RecordNotFound):
        return FailureClass.UNAVAILABLE
    if isinstance(exc, PolicyRejection):
        return FailureClass.POLICY
    if isinstance(exc, BackendUnavailable | TimeoutError | httpx.TransportError):
        return FailureClass.UNAVAILABLE
    if isinstance(exc, httpx.HTTPStatusError):
        return _classify_status(exc.response.status_code)
    if isinstance(exc, APIError):
        return _classify_api_error(exc)
    return FailureClass.UNCLASSIFIED


def describe_failure(exc: BaseException) -> str:
    """Return a short message suitable for a policy rejection."""
    if isinstance(exc, APIError) and exc.message:
        return str(exc.message)
    return str(exc) or exc.__class__.__name__


async def call_primary(func: Callable[[], T], *, timeout: float) -> T:
    """Run a blocking primary call off the event loop, bounded by ``timeout``."""
    return await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout)


async def write_with_fallback(
    primary: Callable[[], T], mirror: Callable[[], T], *, timeout: float, label: str
) -> T:
    """Write through the primary, or through the mirror when it is unavailable.

    Only an unavailable primary diverts the write. Policy and unclassified
    failures propagate unchanged.
    """
    try:
        return await call_primary(primary, timeout=timeout)
    except Exception as exc:
        if classify_failure(exc) is not FailureClass.UNAVAILABLE:
            raise
        _logger.warning(
            "Primary unavailable for %s, using mirror: %s", label, describe_failure(exc)
        )
    return await asyncio.to_thread(mirror)


async def read_primary_or(
    func: Callable[[], T], *, timeout: float, default: T, label: str
) -> T:
    """Run a primary read, returning ``default`` when the primary is unavailable.

    Policy and unclassified failures still propagate.
    """
    try:
        return await call_primary(func, timeout=timeout)
    except Exception as exc:
        if classify_failure(exc) is not FailureClass.UNAVAILABLE:
            raise
        _logger.warning(
            "Primary unavailable for %s, reading mirror only: %s",
            label,
            describe_failure(exc),
        )
        return default


def _classify_api_error(exc: APIError) -> FailureClass:
    code = str(exc.code or "")
    if code in _MISSING_RESOURCE_CODES or code in _CONNECTION_CODES:
        return FailureClass.UNAVAILABLE
    if code.isdigit() and len(code) == 3:  # noqa: PLR2004
        return _classify_status(int(code))
    if code.startswith(_UNAVAILABLE_SQLSTATE_CLASSES):
        return FailureClass.UNAVAILABLE
    if code == "42501" or code.startswith(_POLICY_SQLSTATE_CLASSES):
        return FailureClass.POLICY
    if code.startswith("PGRST3"):
        return FailureClass.POLICY
    return FailureClass.UNCLASSIFIED


def _classify_status(status_code: int) -> FailureClass:
    if status_code in _UNAVAILABLE_HTTP_STATUSES or status_code >= 500:  # noqa: PLR2004
        return FailureClass.UNAVAILABLE
    if 400 <= status_code < 500:  # noqa: PLR2004
        return FailureClass.POLICY
    return FailureClass.UNCLASSIFIED
