"""Single-flight job scheduler.

Pushes that arrive while a rebuild is running are coalesced into at most one
follow-up run. All state transitions happen in synchronous code on the event
loop thread, so no lock is needed; a multi-threaded caller would have to guard
``_running``/``_rerun_requested`` with a mutex.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from pushflight.core.runlog import RunLog
from pushflight.utils.logging import get_logger

log = get_logger(__name__)

Job = Callable[[RunLog, str], Awaitable[None]]


class SingleFlightScheduler:
    def __init__(self, job: Job) -> None:
        self._job = job
        self._running = False
        self._rerun_requested = False
        self._runs = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def rerun_requested(self) -> bool:
        return self._rerun_requested

    @property
    def runs(self) -> int:
        """Number of job body invocations started since process start."""
        return self._runs

    def trigger(self, run_log: RunLog, timestamp: str) -> asyncio.Task[None] | None:
        """Start the job, or mark a rerun if one is already in progress.

        Returns the task running the job (and any reruns it absorbs), or
        ``None`` when the request was coalesced into the current run. Job
        failures are not caught here; they surface through the returned task.
        """
        if self._running:
            self._rerun_requested = True
            run_log.info("Not starting update, because already performing one.")
            log.info("job_coalesced", timestamp=timestamp)
            return None

        self._running = True
        self._rerun_requested = False
        run_log.info("Starting update")
        return asyncio.create_task(self._work(run_log, timestamp), name=f"job-{timestamp}")

    async def _work(self, run_log: RunLog, timestamp: str) -> None:
        try:
            while True:
                self._runs += 1
                log.info("job_started", timestamp=timestamp, run=self._runs)
                await self._job(run_log, timestamp)
                log.info("job_finished", timestamp=timestamp, run=self._runs)
                if not self._rerun_requested:
                    break
                self._rerun_requested = False
                run_log.info("Pushes arrived during the update; starting another.")
        finally:
            self._running = False
            self._rerun_requested = False
