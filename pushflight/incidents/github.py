"""Report failures by reopening a GitHub tracking issue."""

from __future__ import annotations

import traceback

import httpx

from pushflight.config import IncidentConfig
from pushflight.errors import IncidentReportError
from pushflight.incidents.base import IncidentReporter
from pushflight.utils.logging import get_logger

log = get_logger(__name__)

_MAX_BODY_CHARS = 60_000


def format_incident(timestamp: str, error: BaseException) -> str:
    """Render the issue comment for a failure."""
    trace = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    if len(trace) > _MAX_BODY_CHARS:
        trace = trace[-_MAX_BODY_CHARS:]
    return f"### Webhook failure at {timestamp}\n\n```\n{trace.rstrip()}\n```\n"


class GitHubIssueReporter(IncidentReporter):
    """Reopens the configured issue and comments with the error."""

    def __init__(
        self, config: IncidentConfig, client: httpx.AsyncClient | None = None
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=config.api_url.rstrip("/"),
            timeout=30,
        )

    async def report(self, timestamp: str, error: BaseException) -> None:
        if not self._config.access_token:
            raise IncidentReportError("No access token configured for incident reports")
        if not self._config.repository or not self._config.issue_number:
            raise IncidentReportError("No tracking issue configured for incident reports")

        issue_path = f"/repos/{self._config.repository}/issues/{self._config.issue_number}"
        headers = {
            "Authorization": f"token {self._config.access_token}",
            "Accept": "application/vnd.github+json",
        }
        try:
            resp = await self._client.patch(issue_path, json={"state": "open"}, headers=headers)
            resp.raise_for_status()
            resp = await self._client.post(
                f"{issue_path}/comments",
                json={"body": format_incident(timestamp, error)},
                headers=headers,
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise IncidentReportError(
                f"GitHub returned {e.response.status_code} for {e.request.url}"
            ) from e
        except httpx.HTTPError as e:
            raise IncidentReportError(f"Could not reach GitHub: {e}") from e

        log.info(
            "incident_reported",
            timestamp=timestamp,
            repository=self._config.repository,
            issue=self._config.issue_number,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
