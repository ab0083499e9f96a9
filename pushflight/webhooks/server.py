"""Webhook HTTP server using aiohttp."""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Coroutine, Mapping

from aiohttp import web

from pushflight.config import WebhookConfig
from pushflight.core.escalation import Escalator
from pushflight.core.runlog import RunLog, current_timestamp
from pushflight.core.scheduler import SingleFlightScheduler
from pushflight.incidents.base import IncidentReporter
from pushflight.storage.rolling_log import RollingLogStore, flush_run_log
from pushflight.utils.logging import get_logger
from pushflight.webhooks.handlers import parse_push_event, verify_signature

log = get_logger(__name__)


class ServerState(str, Enum):
    SERVING = "serving"
    DRAINING = "draining"
    TERMINATED = "terminated"


class Outcome(str, Enum):
    REJECTED = "rejected"
    IGNORED = "ignored"
    TRIGGERED = "triggered"
    COALESCED = "coalesced"
    ESCALATED = "escalated"


@dataclass
class HandleResult:
    outcome: Outcome
    log: RunLog
    timestamp: str


class WebhookServer:
    """Authenticates push notifications and hands them to the scheduler.

    Lifecycle is SERVING -> DRAINING -> TERMINATED; the only way out of
    SERVING is the escalation path.
    """

    def __init__(
        self,
        config: WebhookConfig,
        scheduler: SingleFlightScheduler,
        store: RollingLogStore,
        reporter: IncidentReporter,
        exit_func: Callable[[int], object] = sys.exit,
    ) -> None:
        self._config = config
        self._scheduler = scheduler
        self._store = store
        self._state = ServerState.SERVING
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._escalator = Escalator(self, store, reporter, exit_func)

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def escalator(self) -> Escalator:
        return self._escalator

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not self._config.secret:
            log.warning(
                "webhook_no_secret",
                msg="No webhook secret configured; every request will be rejected.",
            )
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await self._site.start()
        log.info(
            "webhook_server_started",
            bind=self._config.bind,
            port=self._config.port,
            expected_ref=self._config.expected_ref,
        )

    async def stop(self) -> None:
        await self.wait_background()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        log.info("webhook_server_stopped")

    def begin_draining(self) -> None:
        """Stop handing requests to the scheduler. Takes effect immediately."""
        if self._state is ServerState.SERVING:
            self._state = ServerState.DRAINING
            log.warning("webhook_server_draining")

    async def stop_accepting(self) -> None:
        """Close the listening socket. Called by escalation."""
        self.begin_draining()
        if self._site is not None:
            site, self._site = self._site, None
            await site.stop()

    def mark_terminated(self) -> None:
        self._state = ServerState.TERMINATED

    async def wait_background(self) -> None:
        """Wait for flushes, supervised jobs and escalations started by requests."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application()
        path = self._config.path if self._config.path.startswith("/") else f"/{self._config.path}"
        app.router.add_get("/health", self._handle_health)
        app.router.add_post(path, self._handle_webhook)
        return app

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "ok" if self._state is ServerState.SERVING else self._state.value,
            "state": self._state.value,
            "running": self._scheduler.running,
        })

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        if self._state is not ServerState.SERVING:
            return web.Response(status=503, text="Shutting down")

        body = await request.read()
        # Escalation may have started while the body was being read.
        if self._state is not ServerState.SERVING:
            return web.Response(status=503, text="Shutting down")
        result = self.process(body, request.headers)

        log.info("webhook_handled", outcome=result.outcome.value, timestamp=result.timestamp)
        if result.outcome is Outcome.ESCALATED:
            return web.Response(status=500, text="Internal error")
        return web.Response(status=200, text="OK")

    def process(self, body: bytes, headers: Mapping[str, str]) -> HandleResult:
        """Decide what to do with one push. Never awaits.

        Follow-up work (log flushes, job supervision, escalation) runs as
        background tasks tracked by the server.
        """
        run_log = RunLog()
        timestamp = current_timestamp()
        header = self._config.signature_header

        if not verify_signature(self._config.secret, body, headers.get(header)):
            run_log.error(
                f"Request does not have the correct {header.lower()}: "
                f"headers are {json.dumps(dict(headers), indent=4)}"
            )
            # Rejected requests are not flushed to the rolling log.
            return HandleResult(Outcome.REJECTED, run_log, timestamp)

        try:
            run_log.info(f"Message from github: {body.decode('utf-8', errors='replace')}")
            event = parse_push_event(body, headers.get(header))
            expected_ref = self._config.expected_ref

            if event.ref != expected_ref:
                run_log.info(f"Ignoring push to {event.ref}, expected {expected_ref}.")
                self._spawn(self._flush(run_log, timestamp), f"flush-{timestamp}")
                return HandleResult(Outcome.IGNORED, run_log, timestamp)

            task = self._scheduler.trigger(run_log, timestamp)
            if task is None:
                self._spawn(self._flush(run_log, timestamp), f"flush-{timestamp}")
                return HandleResult(Outcome.COALESCED, run_log, timestamp)

            self._spawn(self._supervise(task, run_log, timestamp), f"supervise-{timestamp}")
            return HandleResult(Outcome.TRIGGERED, run_log, timestamp)
        except Exception as e:
            log.exception("webhook_handling_failed", timestamp=timestamp)
            self.begin_draining()
            self._spawn(self._escalator.escalate(run_log, timestamp, e), f"escalate-{timestamp}")
            return HandleResult(Outcome.ESCALATED, run_log, timestamp)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _supervise(self, job: asyncio.Task[None], run_log: RunLog, timestamp: str) -> None:
        try:
            await job
        except Exception as e:
            log.error("job_failed", timestamp=timestamp, error=str(e))
            await self._escalator.escalate(run_log, timestamp, e)
            return
        await self._flush(run_log, timestamp)

    async def _flush(self, run_log: RunLog, timestamp: str) -> None:
        try:
            await flush_run_log(self._store, run_log, timestamp)
        except Exception as e:
            await self._escalator.escalate(run_log, timestamp, e)
