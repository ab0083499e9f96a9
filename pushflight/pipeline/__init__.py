"""Rebuild pipeline invoked as the scheduled job body."""

from pushflight.pipeline.rebuild import RebuildJob

__all__ = ["RebuildJob"]
