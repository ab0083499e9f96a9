"""Per-event run log and the timestamps that identify runs."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from pushflight.utils.logging import get_logger

log = get_logger(__name__)


class LogLevel(str, Enum):
    INFO = "info"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    level: LogLevel
    message: str


class RunLog:
    """Append-only record of what happened while handling one push.

    Owned by the request handler that created it and by the job it triggers.
    Once handed to the flush operation it is frozen and further appends raise.
    """

    def __init__(self, echo: bool = True) -> None:
        self._entries: list[LogEntry] = []
        self._frozen = False
        self._echo = echo

    @property
    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    @property
    def infos(self) -> list[str]:
        return [e.message for e in self._entries if e.level is LogLevel.INFO]

    @property
    def errors(self) -> list[str]:
        return [e.message for e in self._entries if e.level is LogLevel.ERROR]

    @property
    def has_errors(self) -> bool:
        return any(e.level is LogLevel.ERROR for e in self._entries)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def info(self, message: str) -> None:
        self._append(LogLevel.INFO, message)

    def error(self, message: str) -> None:
        self._append(LogLevel.ERROR, message)

    def result(self) -> tuple[list[str], list[str]]:
        return self.infos, self.errors

    def freeze(self) -> None:
        self._frozen = True

    def _append(self, level: LogLevel, message: str) -> None:
        if self._frozen:
            raise RuntimeError("run log is read-only after it has been flushed")
        self._entries.append(LogEntry(level, message))
        if self._echo and message:
            if level is LogLevel.ERROR:
                log.error("run_log_entry", message=message)
            else:
                log.info("run_log_entry", message=message)


_last_timestamp: datetime | None = None


def current_timestamp() -> str:
    """Return an ISO-8601 UTC timestamp, strictly increasing within the process."""
    global _last_timestamp
    now = datetime.now(timezone.utc)
    if _last_timestamp is not None and now <= _last_timestamp:
        now = _last_timestamp + timedelta(microseconds=1)
    _last_timestamp = now
    return now.isoformat(timespec="microseconds")
