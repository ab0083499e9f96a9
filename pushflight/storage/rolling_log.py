"""Rolling webhook log with SQLite backend."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from pushflight.core.runlog import LogLevel, RunLog
from pushflight.utils.logging import get_logger

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS log_lines (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_timestamp TEXT NOT NULL,
    line TEXT NOT NULL
);
"""


class RollingLogStore:
    """Keeps the newest ``max_entries`` lines across all runs."""

    def __init__(self, db_path: Path, max_entries: int = 1000) -> None:
        self._db_path = db_path
        self._max_entries = max_entries
        self._db: aiosqlite.Connection | None = None

    async def start(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def write(self, timestamp: str, lines: list[str]) -> None:
        """Append the lines of one run, then drop the oldest beyond the limit."""
        assert self._db is not None
        await self._db.executemany(
            "INSERT INTO log_lines (run_timestamp, line) VALUES (?, ?)",
            [(timestamp, line) for line in lines],
        )
        cursor = await self._db.execute(
            "DELETE FROM log_lines WHERE id NOT IN "
            "(SELECT id FROM log_lines ORDER BY id DESC LIMIT ?)",
            (self._max_entries,),
        )
        await self._db.commit()
        if cursor.rowcount > 0:
            log.debug("rolling_log_pruned", removed=cursor.rowcount)

    async def read_recent(self, limit: int | None = None) -> list[str]:
        """Return the newest lines, oldest first."""
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT line FROM log_lines ORDER BY id DESC LIMIT ?",
            (limit if limit is not None else self._max_entries,),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in reversed(rows)]

    async def count(self) -> int:
        assert self._db is not None
        cursor = await self._db.execute("SELECT COUNT(*) FROM log_lines")
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def export_markdown(self, path: Path) -> int:
        """Write the retained lines to a markdown file. Returns the line count."""
        lines = await self.read_recent()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n" if lines else "")
        return len(lines)


async def flush_run_log(store: RollingLogStore, run_log: RunLog, timestamp: str) -> None:
    """Persist a run log. The log is read-only from here on.

    Error entries are kept (prefixed) rather than dropped, so an escalated
    run leaves its failure in the rolling log.
    """
    run_log.freeze()
    lines = [
        f"ERROR: {entry.message}" if entry.level is LogLevel.ERROR else entry.message
        for entry in run_log.entries
    ]
    await store.write(timestamp, lines)
    log.info("run_log_flushed", timestamp=timestamp, lines=len(lines), errors=len(run_log.errors))
