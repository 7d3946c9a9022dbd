"""Tests for the Linear GraphQL client, against a mock transport."""

import json

import httpx
import pytest

from forgeloop.tracker import LinearClient, TrackerError


def make_client(responder):
    """LinearClient whose requests go to responder(body) -> (status, payload)."""
    calls = []

    def handler(request):
        body = json.loads(request.content)
        calls.append(body)
        status, payload = responder(body)
        if isinstance(payload, str):
            return httpx.Response(status, text=payload)
        return httpx.Response(status, json=payload)

    client = LinearClient(api_key="lin_test", transport=httpx.MockTransport(handler))
    return client, calls


class TestConstruction:
    """API key handling."""

    def test_requires_api_key(self, monkeypatch):
        """No key anywhere is a TrackerError naming LINEAR_API_KEY."""
        monkeypatch.delenv("LINEAR_API_KEY", raising=False)
        with pytest.raises(TrackerError, match="LINEAR_API_KEY"):
            LinearClient()

    def test_key_from_environment(self, monkeypatch):
        """The key from the environment is sent as the Authorization header."""
        monkeypatch.setenv("LINEAR_API_KEY", "lin_env")
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"data": {"project": {"status": {"name": "Planned"}}}})

        with LinearClient(transport=httpx.MockTransport(handler)) as client:
            assert client.get_project_state("proj-1") == "Planned"
        assert seen["auth"] == "lin_env"


class TestProjectState:
    """Reading and writing the project status."""

    def test_get_project_state(self):
        """The project status name is returned."""
        client, calls = make_client(lambda body: (200, {"data": {"project": {"id": "p", "status": {"name": "In Progress"}}}}))
        assert client.get_project_state("proj-1") == "In Progress"
        assert calls[0]["variables"] == {"id": "proj-1"}

    def test_missing_project(self):
        """A null project is reported as not found."""
        client, _ = make_client(lambda body: (200, {"data": {"project": None}}))
        with pytest.raises(TrackerError, match="Project not found"):
            client.get_project_state("proj-1")

    def test_set_project_state_resolves_status_id(self):
        """The status name is resolved to its id before the update."""
        def responder(body):
            if "projectStatuses" in body["query"]:
                return 200, {"data": {"projectStatuses": {"nodes": [
                    {"id": "st-1", "name": "Planned", "type": "planned"},
                    {"id": "st-2", "name": "In Review", "type": "started"},
                ]}}}
            return 200, {"data": {"projectUpdate": {"success": True}}}

        client, calls = make_client(responder)
        client.set_project_state("proj-1", "In Review")
        assert calls[1]["variables"] == {"id": "proj-1", "statusId": "st-2"}

    def test_set_unknown_status(self):
        """A status name Linear does not have fails before any update."""
        client, calls = make_client(lambda body: (200, {"data": {"projectStatuses": {"nodes": []}}}))
        with pytest.raises(TrackerError, match="No project status"):
            client.set_project_state("proj-1", "Done")
        assert len(calls) == 1

    def test_unsuccessful_mutation(self):
        """An update reporting success false is an error."""
        def responder(body):
            if "projectStatuses" in body["query"]:
                return 200, {"data": {"projectStatuses": {"nodes": [{"id": "st-5", "name": "Done"}]}}}
            return 200, {"data": {"projectUpdate": {"success": False}}}

        client, _ = make_client(responder)
        with pytest.raises(TrackerError, match="did not succeed"):
            client.set_project_state("proj-1", "Done")


class TestMilestoneIssues:
    """Issues under a named project milestone."""

    PAYLOAD = {"data": {"project": {"projectMilestones": {"nodes": [
        {"id": "ms-1", "name": "Core Domain", "issues": {"nodes": [
            {"id": "iss-1", "identifier": "ENG-1", "state": {"name": "Done"}},
            {"id": "iss-2", "identifier": "ENG-2", "state": {"name": "Todo"}},
        ]}},
        {"id": "ms-2", "name": "Public API", "issues": {"nodes": []}},
    ]}}}}

    def test_lists_issues(self):
        """Issues of the named milestone are returned with their states."""
        client, _ = make_client(lambda body: (200, self.PAYLOAD))
        issues = client.list_milestone_issues("proj-1", "Core Domain")
        assert [(i.id, i.identifier, i.state) for i in issues] == [
            ("iss-1", "ENG-1", "Done"),
            ("iss-2", "ENG-2", "Todo"),
        ]
        assert client.list_milestone_issues("proj-1", "Public API") == []

    def test_unknown_milestone(self):
        """A milestone name not in the project is an error."""
        client, _ = make_client(lambda body: (200, self.PAYLOAD))
        with pytest.raises(TrackerError, match="Milestone not found"):
            client.list_milestone_issues("proj-1", "Nope")

    def test_set_issue_state(self):
        """The workflow state name is resolved on the issue's team before the update."""
        def responder(body):
            if "IssueTeamStates" in body["query"]:
                return 200, {"data": {"issue": {"id": "iss-2", "team": {"states": {"nodes": [
                    {"id": "ws-1", "name": "Todo"},
                    {"id": "ws-2", "name": "In Progress"},
                ]}}}}}
            return 200, {"data": {"issueUpdate": {"success": True}}}

        client, calls = make_client(responder)
        client.set_issue_state("iss-2", "In Progress")
        assert calls[1]["variables"] == {"id": "iss-2", "stateId": "ws-2"}


class TestErrors:
    """Every failure mode surfaces as TrackerError."""

    def test_http_error(self):
        """A non-2xx response names the status code."""
        client, _ = make_client(lambda body: (500, {"message": "boom"}))
        with pytest.raises(TrackerError, match="HTTP 500"):
            client.get_project_state("proj-1")

    def test_graphql_errors(self):
        """GraphQL errors are raised with their messages."""
        client, _ = make_client(lambda body: (200, {"errors": [{"message": "Entity not found"}]}))
        with pytest.raises(TrackerError, match="Entity not found"):
            client.get_project_state("proj-1")

    def test_invalid_json(self):
        """A non-JSON body is an error."""
        client, _ = make_client(lambda body: (200, "<html>"))
        with pytest.raises(TrackerError, match="invalid JSON"):
            client.get_project_state("proj-1")

    def test_transport_error(self):
        """A connection failure is an error, not an httpx exception."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = LinearClient(api_key="lin_test", transport=httpx.MockTransport(handler))
        with pytest.raises(TrackerError, match="request failed"):
            client.get_project_state("proj-1")
