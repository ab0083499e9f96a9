"""pushflight entry point: wires everything together and serves webhooks."""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

import click

from pushflight import __version__
from pushflight.config import Settings, load_settings
from pushflight.core.scheduler import SingleFlightScheduler
from pushflight.incidents.github import GitHubIssueReporter
from pushflight.pipeline.rebuild import RebuildJob
from pushflight.storage.rolling_log import RollingLogStore
from pushflight.utils.logging import get_logger, setup_logging
from pushflight.webhooks.server import WebhookServer

log = get_logger(__name__)


class Pushflight:
    """Main application orchestrator."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

        self.store = RollingLogStore(
            settings.get_rolling_log_path(),
            max_entries=settings.rolling_log.max_entries,
        )
        self.reporter = GitHubIssueReporter(settings.incident)
        self.scheduler = SingleFlightScheduler(RebuildJob(settings.job))
        self.server = WebhookServer(settings.webhook, self.scheduler, self.store, self.reporter)

    async def start(self) -> None:
        log.info(
            "pushflight_starting",
            version=__version__,
            branch=self.settings.webhook.source_branch,
            dry_run=self.settings.job.dry_run,
        )
        if not self.settings.incident.access_token:
            log.warning("incident_reporting_disabled", msg="No access token; failures are only logged locally.")
        await self.store.start()
        await self.server.start()
        log.info("pushflight_ready")

    async def stop(self) -> None:
        log.info("pushflight_stopping")
        await self.server.stop()
        await self.store.stop()
        await self.reporter.close()
        log.info("pushflight_stopped")


async def export_rolling_log(settings: Settings, path: Path) -> int:
    """Write the retained rolling log to a markdown file."""
    store = RollingLogStore(
        settings.get_rolling_log_path(),
        max_entries=settings.rolling_log.max_entries,
    )
    await store.start()
    try:
        count = await store.export_markdown(path)
    finally:
        await store.stop()
    log.info("rolling_log_exported", path=str(path), lines=count)
    return count


async def run(settings: Settings) -> None:
    app = Pushflight(settings)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()

    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


@click.command()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.option("--dry-run", is_flag=True, help="Log pipeline commands instead of running them")
@click.option(
    "--export-log",
    "export_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the rolling log to a markdown file and exit",
)
def cli(config_path: str | None, log_level: str | None, dry_run: bool, export_path: Path | None) -> None:
    """Serve push webhooks and run one rebuild at a time."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    if dry_run:
        settings.job.dry_run = True
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    if export_path is not None:
        count = asyncio.run(export_rolling_log(settings, export_path))
        click.echo(f"Exported {count} lines to {export_path}")
        return
    asyncio.run(run(settings))


if __name__ == "__main__":
    cli()
