"""Run log, single-flight scheduler and failure escalation."""
