"""Tests for the convergence loop."""

import re
import threading

import pytest

from forgeloop.agents.claude import Agent, AgentResult
from forgeloop.graph import Group, ProjectGraph, Requirement, RequirementGraph
from forgeloop.lib.config import ForgeConfig
from forgeloop.lib.types import GateError, GateResult, PipelineResult, RequirementState
from forgeloop.runner.loop import ConvergenceLoop, RequirementFSM
from forgeloop.state import read_status
from forgeloop.tracker import LifecycleSynchronizer, TrackerClient, TrackerError, TrackerIssue

PASS = PipelineResult(gates=(GateResult(gate="tests", passed=True),))
FAIL = PipelineResult(gates=(
    GateResult(gate="tests", passed=False, errors=(GateError(message="test_cart failed", file="tests/test_cart.py"),)),
))

_REQUIREMENT_HEADER = re.compile(r"Complete Requirement (\S+):")


class RecordingAgent(Agent):
    """Records each prompt and which requirement it was for."""

    def __init__(self, on_dispatch=None, success=True):
        self.prompts = []
        self.dispatched = []
        self.on_dispatch = on_dispatch
        self.success = success

    def dispatch(self, prompt, cwd):
        self.prompts.append(prompt)
        self.dispatched.append(_REQUIREMENT_HEADER.search(prompt).group(1))
        if self.on_dispatch:
            self.on_dispatch(self)
        return AgentResult(success=self.success, exit_code=0 if self.success else 1)


class ScriptedPipeline:
    """Returns scripted results per requirement; passes once a script runs out."""

    def __init__(self, agent, script=None):
        self.agent = agent
        self.script = {rid: list(results) for rid, results in (script or {}).items()}
        self.runs = 0

    def run(self, project_dir, gate_names=None):
        self.runs += 1
        remaining = self.script.get(self.agent.dispatched[-1], [])
        return remaining.pop(0) if remaining else PASS


class FakeTracker(TrackerClient):
    """In-memory tracker recording every write."""

    def __init__(self, state="Planned", issues=None, fail=False):
        self.state = state
        self.issues = issues or {}
        self.fail = fail
        self.project_writes = []
        self.issue_writes = []

    def get_project_state(self, project_id):
        if self.fail:
            raise TrackerError("Linear API returned HTTP 503")
        return self.state

    def set_project_state(self, project_id, state):
        self.project_writes.append(state)
        self.state = state

    def list_milestone_issues(self, project_id, milestone_name):
        if self.fail:
            raise TrackerError("Linear API returned HTTP 503")
        return list(self.issues.get(milestone_name, []))

    def set_issue_state(self, issue_id, state_name):
        if self.fail:
            raise TrackerError("Linear API returned HTTP 503")
        self.issue_writes.append((issue_id, state_name))


def req(rid, *deps, group=None, complete=False, linear_issue_id=None):
    return Requirement(id=rid, title=f"Title {rid}", body=f"Build {rid}.", acceptance=("works",),
                       dependencies=frozenset(deps), group=group, complete=complete,
                       linear_issue_id=linear_issue_id)


def project_graph(requirements, groups=None, linear_project_id=None):
    return ProjectGraph(
        project="Shop",
        slug="shop",
        branch="feat/shop",
        created_at="2026-01-05T10:00:00+00:00",
        overview="A small shop.",
        graph=RequirementGraph(requirements),
        groups=groups or {},
        linear_project_id=linear_project_id,
    )


def make_loop(tmp_path, agent, pipeline, max_iterations=3, **kwargs):
    config = ForgeConfig(gates=("tests",), max_iterations=max_iterations)
    return ConvergenceLoop(tmp_path, agent, pipeline, config, **kwargs)


class TestRequirementFSM:
    """Transitions allowed for a single requirement."""

    def test_happy_path(self):
        """Dispatch, a failed verify, a retry and a passing verify end in SUCCEEDED."""
        fsm = RequirementFSM("R-1")
        fsm.dispatch()
        fsm.verify()
        fsm.retry()
        fsm.verify()
        fsm.succeed()
        assert fsm.current is RequirementState.SUCCEEDED

    def test_cannot_verify_before_dispatch(self):
        """Verifying a requirement that was never dispatched is rejected."""
        from transitions import MachineError

        fsm = RequirementFSM("R-1")
        with pytest.raises(MachineError):
            fsm.verify()


class TestConvergence:
    """Dispatch and verify until the gates pass or iterations run out."""

    def test_passes_first_time(self, tmp_path):
        """Passing gates on the first attempt succeed after one iteration."""
        agent = RecordingAgent()
        loop = make_loop(tmp_path, agent, ScriptedPipeline(agent))
        result = loop.run(project_graph([req("R-1")]))
        assert result.states == {"R-1": RequirementState.SUCCEEDED}
        assert result.succeeded is True
        assert result.iterations("R-1") == 1

    def test_retries_until_pass(self, tmp_path):
        """Failed attempts are retried until the gates pass."""
        agent = RecordingAgent()
        pipeline = ScriptedPipeline(agent, {"R-1": [FAIL, FAIL]})
        result = make_loop(tmp_path, agent, pipeline).run(project_graph([req("R-1")]))
        assert result.states["R-1"] is RequirementState.SUCCEEDED
        assert result.iterations("R-1") == 3
        assert result.final_result("R-1").passed is True

    def test_failures_fed_into_next_prompt(self, tmp_path):
        """The next prompt carries the previous gate failures and the attempt count."""
        agent = RecordingAgent()
        pipeline = ScriptedPipeline(agent, {"R-1": [FAIL]})
        make_loop(tmp_path, agent, pipeline).run(project_graph([req("R-1")]))
        assert "First iteration" in agent.prompts[0]
        assert "Attempt 1 of 3." in agent.prompts[0]
        assert "did not pass verification" in agent.prompts[1]
        assert "test_cart failed" in agent.prompts[1]
        assert "Attempt 2 of 3." in agent.prompts[1]

    def test_exhaustion_after_exactly_max_iterations(self, tmp_path):
        """A requirement that never passes stops after exactly max_iterations dispatches."""
        agent = RecordingAgent()
        pipeline = ScriptedPipeline(agent, {"R-1": [FAIL] * 10})
        result = make_loop(tmp_path, agent, pipeline, max_iterations=3).run(project_graph([req("R-1")]))
        assert result.states["R-1"] is RequirementState.FAILED_EXHAUSTED
        assert agent.dispatched == ["R-1", "R-1", "R-1"]
        assert pipeline.runs == 3
        assert result.succeeded is False

    def test_agent_failure_still_verified(self, tmp_path):
        """A non-zero agent exit still goes through the gates."""
        agent = RecordingAgent(success=False)
        pipeline = ScriptedPipeline(agent)
        result = make_loop(tmp_path, agent, pipeline).run(project_graph([req("R-1")]))
        assert pipeline.runs == 1
        assert result.states["R-1"] is RequirementState.SUCCEEDED

    def test_verify_cache_written(self, tmp_path):
        """Every verification refreshes the verify cache."""
        agent = RecordingAgent()
        make_loop(tmp_path, agent, ScriptedPipeline(agent)).run(project_graph([req("R-1")]))
        assert (tmp_path / ".forge" / "last-verify.json").exists()


class TestDependencies:
    """Order and blocking across the graph."""

    def test_topological_dispatch_order(self, tmp_path):
        """Requirements are dispatched after their dependencies."""
        agent = RecordingAgent()
        graph = project_graph([req("C", "B"), req("B", "A"), req("A")])
        make_loop(tmp_path, agent, ScriptedPipeline(agent)).run(graph)
        assert agent.dispatched == ["A", "B", "C"]

    def test_exhausted_blocks_dependents(self, tmp_path):
        """Transitive dependents of an exhausted requirement are blocked and never dispatched."""
        agent = RecordingAgent()
        pipeline = ScriptedPipeline(agent, {"A": [FAIL] * 3})
        graph = project_graph([req("A"), req("B", "A"), req("C", "B"), req("D")])
        result = make_loop(tmp_path, agent, pipeline).run(graph)

        assert result.states == {
            "A": RequirementState.FAILED_EXHAUSTED,
            "B": RequirementState.BLOCKED,
            "C": RequirementState.BLOCKED,
            "D": RequirementState.SUCCEEDED,
        }
        assert "B" not in agent.dispatched
        assert "C" not in agent.dispatched
        assert result.summary() == {"failed_exhausted": 1, "blocked": 2, "succeeded": 1}

    def test_complete_requirements_not_dispatched(self, tmp_path):
        """Requirements already complete count as succeeded without a dispatch."""
        agent = RecordingAgent()
        graph = project_graph([req("A", complete=True), req("B", "A")])
        result = make_loop(tmp_path, agent, ScriptedPipeline(agent)).run(graph)
        assert agent.dispatched == ["B"]
        assert result.states["A"] is RequirementState.SUCCEEDED
        assert result.iterations("A") == 0

    def test_dependency_prompt_section(self, tmp_path):
        """Completed dependencies are described in the dependent prompt."""
        agent = RecordingAgent()
        graph = project_graph([req("A"), req("B", "A")])
        make_loop(tmp_path, agent, ScriptedPipeline(agent)).run(graph)
        assert "## Completed Dependencies" not in agent.prompts[0]
        assert "### A: Title A" in agent.prompts[1]


class TestCancellation:
    """A stop signal is observed between iterations."""

    def test_stop_during_iterations_blocks_current(self, tmp_path):
        """A stop with iterations left blocks the current requirement."""
        stop = threading.Event()
        agent = RecordingAgent(on_dispatch=lambda a: stop.set())
        pipeline = ScriptedPipeline(agent, {"A": [FAIL] * 3})
        graph = project_graph([req("A"), req("B")])
        result = make_loop(tmp_path, agent, pipeline, stop_event=stop).run(graph)

        assert result.cancelled is True
        assert result.states["A"] is RequirementState.BLOCKED
        assert result.states["B"] is RequirementState.PENDING
        assert agent.dispatched == ["A"]

    def test_stop_on_last_iteration_is_exhaustion(self, tmp_path):
        """A stop that lands after the final failing attempt exhausts, and dependents are blocked."""
        stop = threading.Event()
        agent = RecordingAgent(on_dispatch=lambda a: stop.set() if len(a.dispatched) == 3 else None)
        pipeline = ScriptedPipeline(agent, {"A": [FAIL] * 3})
        graph = project_graph([req("A"), req("B", "A"), req("C")])
        result = make_loop(tmp_path, agent, pipeline, max_iterations=3, stop_event=stop).run(graph)

        assert result.states["A"] is RequirementState.FAILED_EXHAUSTED
        assert result.states["B"] is RequirementState.BLOCKED
        assert result.states["C"] is RequirementState.PENDING
        assert result.iterations("A") == 3
        assert result.cancelled is True

    def test_stop_after_success_leaves_rest_pending(self, tmp_path):
        """A stop after a success leaves later requirements pending."""
        stop = threading.Event()
        agent = RecordingAgent(on_dispatch=lambda a: stop.set())
        graph = project_graph([req("A"), req("B")])
        result = make_loop(tmp_path, agent, ScriptedPipeline(agent), stop_event=stop).run(graph)

        assert result.cancelled is True
        assert result.states == {"A": RequirementState.SUCCEEDED, "B": RequirementState.PENDING}

    def test_stop_before_start(self, tmp_path):
        """A stop set before the run dispatches nothing."""
        stop = threading.Event()
        stop.set()
        agent = RecordingAgent()
        result = make_loop(tmp_path, agent, ScriptedPipeline(agent), stop_event=stop).run(project_graph([req("A")]))
        assert agent.dispatched == []
        assert result.states["A"] is RequirementState.PENDING


class TestCheckpointing:
    """Milestone progress lands in the status store."""

    GROUPS = {
        "core": Group(key="core", name="Core Domain", order=1),
        "api": Group(key="api", name="Public API", order=2, depends_on=("core",)),
    }

    def graph(self, **kwargs):
        return project_graph(
            [req("R-1", group="core"), req("R-2", "R-1", group="core"), req("R-3", "R-1", "R-2", group="api")],
            groups=self.GROUPS,
            **kwargs,
        )

    def test_status_created_and_milestones_completed(self, tmp_path):
        """The status file is created and finished groups are marked complete."""
        agent = RecordingAgent()
        make_loop(tmp_path, agent, ScriptedPipeline(agent)).run(self.graph())
        status = read_status(tmp_path, "shop")
        assert status.branch == "feat/shop"
        assert status.milestones["core"].status == "complete"
        assert status.milestones["core"].completed_at
        assert status.milestones["api"].status == "complete"

    def test_partial_group_in_progress(self, tmp_path):
        """A group with an exhausted member stays in progress."""
        agent = RecordingAgent()
        pipeline = ScriptedPipeline(agent, {"R-2": [FAIL] * 3})
        make_loop(tmp_path, agent, pipeline).run(self.graph())
        status = read_status(tmp_path, "shop")
        assert status.milestones["core"].status == "in_progress"
        assert status.milestones["api"].status == "pending"

    def test_completed_milestone_skipped_on_rerun(self, tmp_path):
        """A rerun skips milestones the previous run completed."""
        agent = RecordingAgent()
        pipeline = ScriptedPipeline(agent, {"R-3": [FAIL] * 3})
        make_loop(tmp_path, agent, pipeline).run(self.graph())

        rerun_agent = RecordingAgent()
        result = make_loop(tmp_path, rerun_agent, ScriptedPipeline(rerun_agent)).run(self.graph())
        assert rerun_agent.dispatched == ["R-3"]
        assert result.succeeded is True

    def test_persist_disabled(self, tmp_path):
        """Nothing is written under .planning when persistence is off."""
        agent = RecordingAgent()
        make_loop(tmp_path, agent, ScriptedPipeline(agent), persist=False).run(self.graph())
        assert not (tmp_path / ".planning").exists()


class TestTrackerSync:
    """Best-effort tracker updates from the loop."""

    def graph(self, project_id="proj-1"):
        return project_graph(
            [req("R-1", group="core"), req("R-2", "R-1", group="core")],
            groups={"core": Group(key="core", name="Core Domain", order=1)},
            linear_project_id=project_id,
        )

    def test_project_advanced_and_milestone_started(self, tmp_path):
        """The project moves to In Progress then In Review, and open milestone issues start."""
        tracker = FakeTracker(state="Planned", issues={"Core Domain": [
            TrackerIssue("iss-1", "Todo"),
            TrackerIssue("iss-2", "Done"),
        ]})
        agent = RecordingAgent()
        loop = make_loop(tmp_path, agent, ScriptedPipeline(agent), synchronizer=LifecycleSynchronizer(tracker))
        result = loop.run(self.graph())

        assert result.succeeded is True
        assert tracker.project_writes == ["In Progress", "In Review"]
        # Milestone start is synced once, on its first dispatch
        assert tracker.issue_writes == [("iss-1", "In Progress")]

    def test_never_moves_backward(self, tmp_path):
        """A project already further along is left alone."""
        tracker = FakeTracker(state="Done")
        agent = RecordingAgent()
        loop = make_loop(tmp_path, agent, ScriptedPipeline(agent), synchronizer=LifecycleSynchronizer(tracker))
        loop.run(self.graph())
        assert tracker.project_writes == []

    def test_tracker_failure_does_not_fail_run(self, tmp_path):
        """Tracker errors are logged and the run still succeeds."""
        tracker = FakeTracker(fail=True)
        agent = RecordingAgent()
        loop = make_loop(tmp_path, agent, ScriptedPipeline(agent), synchronizer=LifecycleSynchronizer(tracker))
        result = loop.run(self.graph())
        assert result.succeeded is True

    def test_no_sync_without_project_id(self, tmp_path):
        """Nothing is synced when the graph has no Linear project."""
        tracker = FakeTracker()
        agent = RecordingAgent()
        loop = make_loop(tmp_path, agent, ScriptedPipeline(agent), synchronizer=LifecycleSynchronizer(tracker))
        loop.run(self.graph(project_id=None))
        assert tracker.project_writes == []
        assert tracker.issue_writes == []

    def test_requirement_issue_started_on_dispatch(self, tmp_path):
        """A requirement linked to its own issue moves that issue to In Progress when dispatched."""
        tracker = FakeTracker(state="Planned")
        agent = RecordingAgent()
        graph = project_graph([req("R-1", linear_issue_id="iss-9"), req("R-2", "R-1")], linear_project_id="proj-1")
        loop = make_loop(tmp_path, agent, ScriptedPipeline(agent), synchronizer=LifecycleSynchronizer(tracker))
        result = loop.run(graph)

        assert result.succeeded is True
        assert tracker.issue_writes == [("iss-9", "In Progress")]

    def test_requirement_issue_failure_does_not_fail_run(self, tmp_path):
        """A failed issue write is logged and the requirement still converges."""
        tracker = FakeTracker(fail=True)
        agent = RecordingAgent()
        graph = project_graph([req("R-1", linear_issue_id="iss-9")], linear_project_id="proj-1")
        loop = make_loop(tmp_path, agent, ScriptedPipeline(agent), synchronizer=LifecycleSynchronizer(tracker))
        result = loop.run(graph)

        assert result.states["R-1"] is RequirementState.SUCCEEDED
        assert tracker.issue_writes == []

    def test_exhausted_run_not_moved_to_review(self, tmp_path):
        """A run with an exhausted requirement never reaches In Review."""
        tracker = FakeTracker(state="Planned")
        agent = RecordingAgent()
        pipeline = ScriptedPipeline(agent, {"R-2": [FAIL] * 3})
        loop = make_loop(tmp_path, agent, pipeline, synchronizer=LifecycleSynchronizer(tracker))
        loop.run(self.graph())
        assert tracker.project_writes == ["In Progress"]
