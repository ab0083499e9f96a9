"""Durable storage for run logs."""

from pushflight.storage.rolling_log import RollingLogStore, flush_run_log

__all__ = ["RollingLogStore", "flush_run_log"]
