"""
Linear tracker client over the GraphQL API.

Project states map to Linear project statuses by name; issue states map to
the owning team's workflow states by name. Every transport error, non-2xx
response or GraphQL `errors` payload raises TrackerError.
"""

import logging
import os

import httpx

from .client import TrackerClient, TrackerError, TrackerIssue

logger = logging.getLogger(__name__)

LINEAR_API_URL = "https://api.linear.app/graphql"
API_KEY_ENV = "LINEAR_API_KEY"

PROJECT_STATUS_QUERY = """
query ProjectStatus($id: String!) {
  project(id: $id) { id status { id name } }
}
"""

PROJECT_STATUSES_QUERY = """
query ProjectStatuses {
  projectStatuses { nodes { id name type } }
}
"""

PROJECT_UPDATE_MUTATION = """
mutation ProjectUpdate($id: String!, $statusId: String!) {
  projectUpdate(id: $id, input: { statusId: $statusId }) { success }
}
"""

MILESTONE_ISSUES_QUERY = """
query MilestoneIssues($id: String!) {
  project(id: $id) {
    projectMilestones {
      nodes {
        id
        name
        issues { nodes { id identifier state { name } } }
      }
    }
  }
}
"""

ISSUE_TEAM_STATES_QUERY = """
query IssueTeamStates($id: String!) {
  issue(id: $id) { id team { states { nodes { id name } } } }
}
"""

ISSUE_UPDATE_MUTATION = """
mutation IssueUpdate($id: String!, $stateId: String!) {
  issueUpdate(id: $id, input: { stateId: $stateId }) { success }
}
"""


class LinearClient(TrackerClient):
    """TrackerClient backed by Linear."""

    def __init__(self, api_key: str | None = None, timeout: float = 30.0,
                 transport: httpx.BaseTransport | None = None):
        api_key = api_key or os.environ.get(API_KEY_ENV)
        if not api_key:
            raise TrackerError(f"{API_KEY_ENV} is not set")
        self._client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={"Authorization": api_key, "Content-Type": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LinearClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _execute(self, query: str, variables: dict | None = None) -> dict:
        """POST a GraphQL document and return its `data`."""
        try:
            response = self._client.post(LINEAR_API_URL, json={"query": query, "variables": variables or {}})
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise TrackerError(f"Linear API returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TrackerError(f"Linear API request failed: {e}") from e
        except ValueError as e:
            raise TrackerError(f"Linear API returned invalid JSON: {e}") from e

        if payload.get("errors"):
            messages = "; ".join(err.get("message", "unknown error") for err in payload["errors"])
            raise TrackerError(f"Linear API error: {messages}")
        return payload.get("data") or {}

    def _require_success(self, data: dict, key: str) -> None:
        if not (data.get(key) or {}).get("success"):
            raise TrackerError(f"Linear {key} did not succeed")

    def get_project_state(self, project_id: str) -> str:
        data = self._execute(PROJECT_STATUS_QUERY, {"id": project_id})
        project = data.get("project")
        if not project:
            raise TrackerError(f"Project not found: {project_id}")
        status = project.get("status") or {}
        if not status.get("name"):
            raise TrackerError(f"Project {project_id} has no status")
        return status["name"]

    def set_project_state(self, project_id: str, state: str) -> None:
        data = self._execute(PROJECT_STATUSES_QUERY)
        nodes = (data.get("projectStatuses") or {}).get("nodes", [])
        status_id = next((n["id"] for n in nodes if n["name"].lower() == state.lower()), None)
        if status_id is None:
            raise TrackerError(f'No project status named "{state}"')

        data = self._execute(PROJECT_UPDATE_MUTATION, {"id": project_id, "statusId": status_id})
        self._require_success(data, "projectUpdate")
        logger.debug(f"Linear project {project_id} status set to {state}")

    def list_milestone_issues(self, project_id: str, milestone_name: str) -> list[TrackerIssue]:
        data = self._execute(MILESTONE_ISSUES_QUERY, {"id": project_id})
        project = data.get("project")
        if not project:
            raise TrackerError(f"Project not found: {project_id}")

        for milestone in (project.get("projectMilestones") or {}).get("nodes", []):
            if milestone["name"] == milestone_name:
                return [
                    TrackerIssue(
                        id=node["id"],
                        identifier=node.get("identifier"),
                        state=(node.get("state") or {}).get("name", ""),
                    )
                    for node in (milestone.get("issues") or {}).get("nodes", [])
                ]
        raise TrackerError(f'Milestone not found: "{milestone_name}" in project {project_id}')

    def set_issue_state(self, issue_id: str, state_name: str) -> None:
        data = self._execute(ISSUE_TEAM_STATES_QUERY, {"id": issue_id})
        issue = data.get("issue")
        if not issue:
            raise TrackerError(f"Issue not found: {issue_id}")

        states = ((issue.get("team") or {}).get("states") or {}).get("nodes", [])
        state_id = next((s["id"] for s in states if s["name"].lower() == state_name.lower()), None)
        if state_id is None:
            raise TrackerError(f'No workflow state named "{state_name}" for issue {issue_id}')

        data = self._execute(ISSUE_UPDATE_MUTATION, {"id": issue_id, "stateId": state_id})
        self._require_success(data, "issueUpdate")
        logger.debug(f"Linear issue {issue_id} moved to {state_name}")
