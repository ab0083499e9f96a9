"""Failure escalation: stop serving, persist the log, report, exit."""

from __future__ import annotations

import sys
from typing import Awaitable, Callable, Protocol

from pushflight.core.runlog import RunLog
from pushflight.incidents.base import IncidentReporter
from pushflight.storage.rolling_log import RollingLogStore, flush_run_log
from pushflight.utils.logging import get_logger

log = get_logger(__name__)

EXIT_FAILURE = 1


class Drainable(Protocol):
    async def stop_accepting(self) -> None: ...

    def mark_terminated(self) -> None: ...


class Escalator:
    """Runs the shutdown sequence for an unrecoverable failure.

    Each step is attempted even if an earlier one fails; the process always
    exits with status 1 afterwards. Only the first escalation drives the
    sequence. Later ones persist their log and are recorded on the
    diagnostic channel while the first finishes.
    """

    def __init__(
        self,
        server: Drainable,
        store: RollingLogStore,
        reporter: IncidentReporter,
        exit_func: Callable[[int], object] = sys.exit,
    ) -> None:
        self._server = server
        self._store = store
        self._reporter = reporter
        self._exit = exit_func
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def escalate(self, run_log: RunLog, timestamp: str, error: BaseException) -> None:
        if not run_log.frozen:
            run_log.error(f"{type(error).__name__}: {error}")

        if self._started:
            log.error("escalation_already_running", timestamp=timestamp, exc_info=error)
            await self._attempt("escalation_flush_failed", flush_run_log(self._store, run_log, timestamp))
            return

        self._started = True
        log.error("escalation_started", timestamp=timestamp, error=str(error))

        await self._attempt("escalation_close_failed", self._server.stop_accepting())
        await self._attempt("escalation_flush_failed", flush_run_log(self._store, run_log, timestamp))
        await self._attempt("incident_report_failed", self._reporter.report(timestamp, error))

        log.error("escalation_exiting", timestamp=timestamp, exc_info=error)
        self._server.mark_terminated()
        self._exit(EXIT_FAILURE)

    async def _attempt(self, event: str, step: Awaitable[None]) -> None:
        try:
            await step
        except Exception:
            log.exception(event)
