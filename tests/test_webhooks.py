"""Tests for the webhook endpoint, models, and config."""

import asyncio
import hashlib
import hmac
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from pushflight.config import Settings, WebhookConfig
from pushflight.core.scheduler import SingleFlightScheduler
from pushflight.storage.rolling_log import RollingLogStore
from pushflight.webhooks.server import Outcome, ServerState, WebhookServer

SECRET = "s3cr3t"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return "sha1=" + hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()


def _push(ref: str) -> bytes:
    return json.dumps({"ref": ref}, separators=(",", ":")).encode()


class ControlledJob:
    def __init__(self):
        self.calls = []
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.error: BaseException | None = None

    async def __call__(self, run_log, timestamp):
        self.calls.append(timestamp)
        self.started.set()
        await self.release.wait()
        if self.error is not None:
            raise self.error


# ---------------------------------------------------------------------------
# Config tests
# ---------------------------------------------------------------------------

class TestWebhookConfig:
    def test_defaults(self):
        cfg = WebhookConfig()
        assert cfg.port == 5000
        assert cfg.bind == "0.0.0.0"
        assert cfg.source_branch == "master"
        assert cfg.signature_header == "X-Hub-Signature"

    def test_expected_ref(self):
        assert WebhookConfig(source_branch="main").expected_ref == "refs/heads/main"

    def test_settings_has_webhook(self):
        assert isinstance(Settings().webhook, WebhookConfig)


# ---------------------------------------------------------------------------
# Endpoint tests
# ---------------------------------------------------------------------------

@pytest.fixture
async def store(tmp_path):
    s = RollingLogStore(tmp_path / "webhook-logs.db")
    await s.start()
    yield s
    await s.stop()


@pytest.fixture
def job():
    return ControlledJob()


@pytest.fixture
def reporter():
    r = MagicMock()
    r.report = AsyncMock()
    return r


@pytest.fixture
def exit_func():
    return MagicMock()


@pytest.fixture
def server(job, store, reporter, exit_func):
    config = WebhookConfig(secret=SECRET, source_branch="main", path="/webhook")
    return WebhookServer(config, SingleFlightScheduler(job), store, reporter, exit_func)


@pytest.fixture
async def client(server):
    async with TestClient(TestServer(server.build_app())) as c:
        yield c


def _headers(body: bytes) -> dict[str, str]:
    return {"Content-Type": "application/json", "X-Hub-Signature": _sign(body)}


class TestProcess:
    async def test_missing_signature_is_rejected_quietly(self, server, store, reporter, job, exit_func):
        result = server.process(_push("refs/heads/main"), {"Content-Type": "application/json"})
        await server.wait_background()

        assert result.outcome is Outcome.REJECTED
        assert len(result.log.errors) == 1
        assert "x-hub-signature" in result.log.errors[0]
        assert result.log.infos == []
        assert await store.count() == 0
        assert job.calls == []
        reporter.report.assert_not_called()
        exit_func.assert_not_called()
        assert server.state is ServerState.SERVING

    async def test_bad_signature_is_rejected(self, server, store):
        body = _push("refs/heads/main")
        result = server.process(body, {"X-Hub-Signature": _sign(body, "wrong")})
        await server.wait_background()
        assert result.outcome is Outcome.REJECTED
        assert await store.count() == 0

    async def test_other_branch_is_ignored_and_flushed(self, server, store, job):
        body = _push("refs/heads/dev")
        result = server.process(body, _headers(body))
        await server.wait_background()

        assert result.outcome is Outcome.IGNORED
        ignoring = [m for m in result.log.infos if m.startswith("Ignoring push")]
        assert ignoring == ["Ignoring push to refs/heads/dev, expected refs/heads/main."]
        assert result.log.errors == []
        assert result.log.frozen is True
        assert "Ignoring push to refs/heads/dev, expected refs/heads/main." in await store.read_recent()
        assert job.calls == []

    async def test_target_branch_starts_job(self, server, job, store):
        body = _push("refs/heads/main")
        result = server.process(body, _headers(body))
        assert result.outcome is Outcome.TRIGGERED

        await job.started.wait()
        assert job.calls == [result.timestamp]
        job.release.set()
        await server.wait_background()

        assert result.log.frozen is True
        assert "Starting update" in await store.read_recent()

    async def test_second_push_while_running_coalesces_into_one_rerun(self, server, job):
        body = _push("refs/heads/main")
        first = server.process(body, _headers(body))
        await job.started.wait()

        second = server.process(body, _headers(body))
        third = server.process(body, _headers(body))
        assert first.outcome is Outcome.TRIGGERED
        assert second.outcome is Outcome.COALESCED
        assert third.outcome is Outcome.COALESCED
        assert len(job.calls) == 1

        job.release.set()
        await server.wait_background()
        assert job.calls == [first.timestamp, first.timestamp]

    @pytest.mark.parametrize(
        "body",
        [
            b'{"zen": "Design for failure.", "hook_id": 1, "hook": {"events": ["push"]}}',
            b'{"ref": null}',
        ],
    )
    async def test_event_without_ref_is_ignored_and_flushed(self, server, store, reporter, exit_func, job, body):
        headers = {**_headers(body), "X-GitHub-Event": "ping"}
        result = server.process(body, headers)
        await server.wait_background()

        assert result.outcome is Outcome.IGNORED
        assert "Ignoring push to None, expected refs/heads/main." in result.log.infos
        assert result.log.errors == []
        assert result.log.frozen is True
        assert "Ignoring push to None, expected refs/heads/main." in await store.read_recent()
        assert job.calls == []
        reporter.report.assert_not_called()
        exit_func.assert_not_called()
        assert server.state is ServerState.SERVING

    async def test_escalation_drains_before_returning(self, server, job, exit_func):
        body = b"not json"
        result = server.process(body, _headers(body))

        assert result.outcome is Outcome.ESCALATED
        assert server.state is ServerState.DRAINING
        exit_func.assert_not_called()

        await server.wait_background()
        assert server.state is ServerState.TERMINATED
        assert job.calls == []

    async def test_malformed_payload_escalates(self, server, store, reporter, exit_func, job):
        body = b"not json"
        result = server.process(body, _headers(body))
        await server.wait_background()

        assert result.outcome is Outcome.ESCALATED
        assert server.state is ServerState.TERMINATED
        reporter.report.assert_awaited_once()
        assert reporter.report.await_args.args[0] == result.timestamp
        exit_func.assert_called_once_with(1)
        assert any(line.startswith("ERROR: PayloadError") for line in await store.read_recent())
        assert job.calls == []

    async def test_job_failure_escalates(self, server, job, store, reporter, exit_func):
        job.error = RuntimeError("publish failed")
        job.release.set()
        body = _push("refs/heads/main")
        result = server.process(body, _headers(body))
        await server.wait_background()

        assert result.outcome is Outcome.TRIGGERED
        assert server.state is ServerState.TERMINATED
        reported_error = reporter.report.await_args.args[1]
        assert isinstance(reported_error, RuntimeError)
        exit_func.assert_called_once_with(1)
        assert "ERROR: RuntimeError: publish failed" in await store.read_recent()

    async def test_flush_precedes_incident_report(self, server, job, store, reporter):
        order = []
        real_write = store.write

        async def write(timestamp, lines):
            order.append("flush")
            await real_write(timestamp, lines)

        async def report(timestamp, error):
            order.append("report")

        store.write = write
        reporter.report = AsyncMock(side_effect=report)
        job.error = RuntimeError("publish failed")
        job.release.set()

        body = _push("refs/heads/main")
        server.process(body, _headers(body))
        await server.wait_background()
        assert order == ["flush", "report"]

    async def test_incident_failure_still_exits(self, server, job, reporter, exit_func):
        reporter.report.side_effect = RuntimeError("github down")
        job.error = RuntimeError("publish failed")
        job.release.set()
        body = _push("refs/heads/main")
        server.process(body, _headers(body))
        await server.wait_background()
        exit_func.assert_called_once_with(1)


class TestWebhookHttp:
    async def test_valid_push_returns_200(self, client, server, job):
        body = _push("refs/heads/main")
        resp = await client.post("/webhook", data=body, headers=_headers(body))
        assert resp.status == 200
        await job.started.wait()
        job.release.set()
        await server.wait_background()

    async def test_missing_signature_returns_200(self, client, job):
        resp = await client.post("/webhook", data=_push("refs/heads/main"))
        assert resp.status == 200
        assert job.calls == []

    async def test_malformed_payload_returns_500(self, client, server):
        body = b"{broken"
        resp = await client.post("/webhook", data=body, headers=_headers(body))
        assert resp.status == 500
        await server.wait_background()

    async def test_draining_server_returns_503(self, client, server):
        await server.stop_accepting()
        body = _push("refs/heads/main")
        resp = await client.post("/webhook", data=body, headers=_headers(body))
        assert resp.status == 503

    async def test_request_after_escalation_is_refused(self, client, server, job):
        bad = b"{broken"
        server.process(bad, _headers(bad))
        body = _push("refs/heads/main")
        resp = await client.post("/webhook", data=body, headers=_headers(body))
        assert resp.status == 503
        await server.wait_background()
        assert job.calls == []

    async def test_escalation_closes_listening_socket(self, store, reporter, exit_func, job):
        config = WebhookConfig(secret=SECRET, source_branch="main", bind="127.0.0.1", port=0)
        server = WebhookServer(config, SingleFlightScheduler(job), store, reporter, exit_func)
        await server.start()
        try:
            body = b"not json"
            server.process(body, _headers(body))
            await server.wait_background()
            assert server.state is ServerState.TERMINATED
            assert server._site is None
        finally:
            await server.stop()

    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status == 200
        assert await resp.json() == {"status": "ok", "state": "serving", "running": False}

    async def test_unknown_path_returns_404(self, client):
        resp = await client.post("/elsewhere", data=b"{}")
        assert resp.status == 404
