"""The rebuild/publish job body: configured shell commands run in order."""

from __future__ import annotations

import asyncio

from pushflight.config import JobConfig
from pushflight.core.runlog import RunLog
from pushflight.errors import JobError
from pushflight.utils.logging import get_logger
from pushflight.utils.platform import get_default_shell, shell_args

log = get_logger(__name__)

_MAX_OUTPUT = 4000


def _tail(text: str, max_len: int = _MAX_OUTPUT) -> str:
    if len(text) > max_len:
        return f"... (truncated, {len(text)} total chars)\n" + text[-max_len:]
    return text


class RebuildJob:
    """Callable job body for :class:`SingleFlightScheduler`."""

    def __init__(self, config: JobConfig) -> None:
        self._config = config

    async def __call__(self, run_log: RunLog, timestamp: str) -> None:
        run_log.info("")
        run_log.info("")
        run_log.info(f"# {timestamp}")
        run_log.info("")
        run_log.info("Starting full...")

        for command in self._config.commands:
            if self._config.dry_run:
                run_log.info(f"[dry run] {command}")
                continue
            await self._run(command, run_log)

        run_log.info("Done.")

    async def _run(self, command: str, run_log: RunLog) -> None:
        run_log.info(f"$ {command}")
        log.info("pipeline_command", command=command)

        try:
            proc = await asyncio.create_subprocess_exec(
                *shell_args(command),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self._config.working_dir or None,
            )
        except FileNotFoundError as e:
            raise JobError(command, 127, f"Shell not found: {get_default_shell()}") from e

        timeout = self._config.timeout or None
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise JobError(command, None)

        output = _tail(stdout.decode("utf-8", errors="replace").strip())
        if output:
            run_log.info(output)
        if proc.returncode != 0:
            raise JobError(command, proc.returncode, output)
