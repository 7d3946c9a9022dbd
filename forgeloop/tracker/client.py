"""Tracker client interface."""

from dataclasses import dataclass


class TrackerError(Exception):
    """The external tracker could not be reached or rejected a request."""


@dataclass(frozen=True)
class TrackerIssue:
    id: str
    state: str                     # workflow state name, e.g. "In Progress"
    identifier: str | None = None  # human key, e.g. "ENG-42"


class TrackerClient:
    """
    Read/write access to the external system of record.

    Implementations raise TrackerError on transport or API failures.
    """

    def get_project_state(self, project_id: str) -> str:
        """Current project state name."""
        raise NotImplementedError

    def set_project_state(self, project_id: str, state: str) -> None:
        raise NotImplementedError

    def list_milestone_issues(self, project_id: str, milestone_name: str) -> list[TrackerIssue]:
        """Issues under the named milestone. Raises TrackerError if it does not exist."""
        raise NotImplementedError

    def set_issue_state(self, issue_id: str, state_name: str) -> None:
        raise NotImplementedError
