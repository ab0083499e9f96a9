"""Exception types raised inside the service."""

from __future__ import annotations


class PushflightError(Exception):
    """Base class for all service errors."""


class PayloadError(PushflightError):
    """An authenticated request carried a body that is not a push notification."""


class JobError(PushflightError):
    """A rebuild pipeline command failed."""

    def __init__(self, command: str, exit_code: int | None, output: str = "") -> None:
        self.command = command
        self.exit_code = exit_code
        self.output = output
        if exit_code is None:
            message = f"Command timed out: {command}"
        else:
            message = f"Command failed with exit code {exit_code}: {command}"
        if output:
            message = f"{message}\n{output}"
        super().__init__(message)


class IncidentReportError(PushflightError):
    """The incident sink could not record a failure."""
