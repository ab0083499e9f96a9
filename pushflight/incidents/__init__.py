"""Incident reporting sinks."""

from pushflight.incidents.base import IncidentReporter
from pushflight.incidents.github import GitHubIssueReporter

__all__ = ["IncidentReporter", "GitHubIssueReporter"]
