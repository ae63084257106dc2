"""Idempotent status tracking and the periodic reconciliation poller."""

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tutor_sessions.domain.statuses import TERMINAL_STATUSES, SessionStatus

_logger = logging.getLogger(__name__)

StatusFetcher = Callable[[], Awaitable[SessionStatus | None]]


@dataclass
class StatusTracker:
    """Last observed status of one record and the reactions to changes.

    ``apply`` is the only place a status change is acted on. Realtime hints
    and the poller both call it, so a change delivered twice is handled once.
    """

    last_observed: SessionStatus | None = None
    on_change: Callable[[SessionStatus, SessionStatus | None], None] | None = None
    on_approved: Callable[[], None] | None = None
    _approved_seen: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self._approved_seen = self.last_observed is SessionStatus.APPROVED

    def apply(self, status: SessionStatus) -> bool:
        """Record ``status``; return whether it differed from the last one."""
        if status == self.last_observed:
            return False
        previous = self.last_observed
        self.last_observed = status
        if self.on_change is not None:
            self.on_change(status, previous)
        if status is SessionStatus.APPROVED and not self._approved_seen:
            self._approved_seen = True
            if self.on_approved is not None:
                self.on_approved()
        return True


class ReconciliationPoller:
    """Re-reads a record's status on a fixed interval and applies changes.

    The poller stops on its own once a terminal status has been observed.
    """

    def __init__(
        self,
        fetch_status: StatusFetcher,
        tracker: StatusTracker,
        interval_seconds: float = 2.0,
    ) -> None:
        self._fetch_status = fetch_status
        self._tracker = tracker
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Fetch the current status and apply it; return whether it changed."""
        status = await self._fetch_status()
        if status is None:
            return False
        return self._tracker.apply(status)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        """Cancel the polling task and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def __aenter__(self) -> "ReconciliationPoller":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_seconds)
            try:
                await self.check_once()
            except Exception:
                _logger.exception("Reconciliation check failed")
                continue
            if self._tracker.last_observed in TERMINAL_STATUSES:
                _logger.debug(
                    "Reconciliation stopped at terminal status %s",
                    self._tracker.last_observed,
                )
                return
