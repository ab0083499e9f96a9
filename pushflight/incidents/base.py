"""Abstract incident sink."""

from __future__ import annotations

from abc import ABC, abstractmethod


class IncidentReporter(ABC):
    @abstractmethod
    async def report(self, timestamp: str, error: BaseException) -> None:
        """Record a failure. Raises IncidentReportError if it cannot."""
        ...

    async def close(self) -> None:
        return None
