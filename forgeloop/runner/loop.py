"""Convergence loop over a requirement graph.

For each requirement, in dependency order:

    PENDING -> RUNNING -> VERIFYING -> SUCCEEDED
                  ^            |
                  +-- retry ---+-> FAILED_EXHAUSTED (after max_iterations)

A requirement whose dependency did not succeed is BLOCKED and never
dispatched. A stop signal observed between iterations BLOCKs the current
requirement while it has attempts left; after its last attempt it is
exhausted as usual.

Only one agent dispatch runs at a time: the working tree is shared and
requirements are serialized even when they are independent.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from transitions import Machine

from forgeloop.agents.claude import Agent
from forgeloop.gates.pipeline import Pipeline
from forgeloop.graph.models import Requirement
from forgeloop.graph.reader import ProjectGraph
from forgeloop.lib.config import ForgeConfig
from forgeloop.lib.report import write_verify_cache
from forgeloop.lib.types import PipelineResult, RequirementOutcome, RequirementState
from forgeloop.state import status as status_store
from forgeloop.tracker.client import TrackerError
from forgeloop.tracker.lifecycle import (
    InvalidTransition,
    LifecycleSynchronizer,
    ProjectState,
    is_valid_transition,
)
from .prompt import build_requirement_prompt

logger = logging.getLogger(__name__)


STATES = [s.value for s in RequirementState]

TRANSITIONS = [
    {"trigger": "dispatch", "source": "pending", "dest": "running"},
    {"trigger": "verify", "source": "running", "dest": "verifying"},
    {"trigger": "succeed", "source": "verifying", "dest": "succeeded"},
    {"trigger": "retry", "source": "verifying", "dest": "running"},
    {"trigger": "exhaust", "source": "verifying", "dest": "failed_exhausted"},
    {"trigger": "block", "source": ["pending", "running", "verifying"], "dest": "blocked"},

    # Work finished before this run
    {"trigger": "mark_complete", "source": "pending", "dest": "succeeded"},
]


class RequirementFSM:
    """Lifecycle of one requirement within a loop run."""

    def __init__(self, requirement_id: str):
        self.requirement_id = requirement_id
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=RequirementState.PENDING.value,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    @property
    def current(self) -> RequirementState:
        return RequirementState(self.state)

    def on_state_change(self, event) -> None:
        logger.info(
            f"[LOOP] {self.requirement_id}: {event.transition.source} -> "
            f"{event.transition.dest} ({event.event.name})"
        )


@dataclass
class LoopResult:
    """Final state per requirement (topological order) and every iteration outcome."""
    states: dict[str, RequirementState] = field(default_factory=dict)
    outcomes: list[RequirementOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return bool(self.states) and all(s == RequirementState.SUCCEEDED for s in self.states.values())

    def iterations(self, requirement_id: str) -> int:
        return sum(1 for o in self.outcomes if o.requirement_id == requirement_id)

    def final_result(self, requirement_id: str) -> PipelineResult | None:
        for outcome in reversed(self.outcomes):
            if outcome.requirement_id == requirement_id:
                return outcome.pipeline_result
        return None

    def summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for state in self.states.values():
            counts[state.value] = counts.get(state.value, 0) + 1
        return counts


class ConvergenceLoop:
    """
    Drives the agent over a requirement graph until each requirement
    passes the gates or runs out of iterations.

    Args:
        project_dir: Project tree the agent edits and the gates check
        agent: Dispatch target for prompts
        pipeline: Gate pipeline run after every dispatch
        config: Supplies max_iterations and the gate list
        stop_event: Cooperative cancellation, checked between iterations
        synchronizer: Optional tracker sync; failures are logged, never raised
        persist: Checkpoint milestone progress in the status store
    """

    def __init__(
        self,
        project_dir: Path,
        agent: Agent,
        pipeline: Pipeline,
        config: ForgeConfig,
        stop_event: threading.Event | None = None,
        synchronizer: LifecycleSynchronizer | None = None,
        persist: bool = True,
    ):
        self.project_dir = project_dir
        self.agent = agent
        self.pipeline = pipeline
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self.synchronizer = synchronizer
        self.persist = persist

    def _stopped(self) -> bool:
        return self.stop_event.is_set()

    def run(self, project_graph: ProjectGraph) -> LoopResult:
        graph = project_graph.graph
        order = graph.topological_order()
        fsms = {req.id: RequirementFSM(req.id) for req in order}
        result = LoopResult()
        self._graph = project_graph
        self._project_started = False

        status = self._load_status(project_graph)
        completed_milestones = {
            key for key, record in (status.milestones.items() if status else [])
            if record.status == status_store.COMPLETE
        }

        logger.info(f"Starting loop over {len(order)} requirements "
                    f"(max {self.config.max_iterations} iterations each)")

        for req in order:
            fsm = fsms[req.id]
            if fsm.current.is_terminal:
                continue

            if req.complete or req.milestone in completed_milestones:
                fsm.mark_complete()
                continue

            failed_deps = [d.id for d in graph.dependencies_of(req.id)
                           if fsms[d.id].current != RequirementState.SUCCEEDED]
            if failed_deps:
                logger.warning(f"{req.id} blocked by {', '.join(failed_deps)}")
                fsm.block()
                continue

            if self._stopped():
                logger.info(f"Stop requested, {req.id} and later requirements not started")
                result.cancelled = True
                break

            self._converge(req, fsm, result)

            if fsm.current == RequirementState.SUCCEEDED:
                self._checkpoint_success(req, fsms)
            elif fsm.current == RequirementState.FAILED_EXHAUSTED:
                for dependent in graph.transitive_dependents(req.id):
                    if fsms[dependent.id].current == RequirementState.PENDING:
                        fsms[dependent.id].block()
            elif fsm.current == RequirementState.BLOCKED:
                result.cancelled = True
                break

        result.states = {req.id: fsms[req.id].current for req in order}
        logger.info(f"Loop finished: {result.summary()}")

        if result.succeeded:
            self._advance_project(ProjectState.IN_REVIEW)
        return result

    def _converge(self, req: Requirement, fsm: RequirementFSM, result: LoopResult) -> None:
        """Dispatch/verify up to max_iterations times. Leaves fsm in a terminal state."""
        max_iterations = self.config.max_iterations
        previous: PipelineResult | None = None
        dependencies = self._graph.graph.dependencies_of(req.id)

        fsm.dispatch()
        self._on_dispatch(req)

        for iteration in range(1, max_iterations + 1):
            if iteration > 1 and self._stopped():
                logger.info(f"Stop requested, {req.id} interrupted before iteration {iteration}")
                fsm.block()
                return

            logger.info(f"{req.id}: iteration {iteration}/{max_iterations}")
            prompt = build_requirement_prompt(
                req, self._graph.overview, dependencies, previous,
                iteration=iteration, max_iterations=max_iterations,
            )
            agent_result = self.agent.dispatch(prompt, self.project_dir)
            if not agent_result.success:
                logger.warning(f"{req.id}: agent exited with {agent_result.exit_code}, verifying anyway")

            fsm.verify()
            pipeline_result = self.pipeline.run(self.project_dir, self.config.gates)
            result.outcomes.append(RequirementOutcome(req.id, iteration, pipeline_result))
            self._write_verify_cache(pipeline_result)

            if pipeline_result.passed:
                fsm.succeed()
                return
            if iteration == max_iterations:
                logger.warning(f"{req.id}: still failing after {max_iterations} iterations")
                fsm.exhaust()
                return
            # Interrupted only while budget remains; a spent budget is exhaustion
            if self._stopped():
                logger.info(f"Stop requested, {req.id} interrupted after iteration {iteration}")
                fsm.block()
                return
            fsm.retry()
            previous = pipeline_result

    # Persistence

    def _load_status(self, project_graph: ProjectGraph) -> status_store.ProjectStatus | None:
        if not self.persist:
            return None
        try:
            return status_store.read_status(self.project_dir, project_graph.slug)
        except status_store.StatusNotFound:
            pass

        milestones = {}
        for req in project_graph.graph:
            milestones.setdefault(req.milestone, status_store.MilestoneRecord())
        status = status_store.ProjectStatus(
            project=project_graph.project,
            slug=project_graph.slug,
            branch=project_graph.branch,
            created_at=project_graph.created_at,
            milestones=milestones,
            linear_project_id=project_graph.linear_project_id,
            linear_team_id=project_graph.linear_team_id,
        )
        status_store.write_status(self.project_dir, project_graph.slug, status)
        logger.info(f"Created status file for {project_graph.slug}")
        return status

    def _set_milestone(self, milestone: str, state: str) -> None:
        if self.persist:
            status_store.update_milestone_status(self.project_dir, self._graph.slug, milestone, state)

    def _checkpoint_success(self, req: Requirement, fsms: dict[str, RequirementFSM]) -> None:
        members = self._graph.graph.group_members(req.milestone)
        done = all(fsms[m.id].current == RequirementState.SUCCEEDED for m in members)
        self._set_milestone(req.milestone, status_store.COMPLETE if done else status_store.IN_PROGRESS)

    def _write_verify_cache(self, pipeline_result: PipelineResult) -> None:
        try:
            write_verify_cache(self.project_dir, pipeline_result, branch=self._graph.branch)
        except OSError as e:
            logger.warning(f"Could not write verify cache: {e}")

    # Tracker sync (best-effort)

    def _on_dispatch(self, req: Requirement) -> None:
        started = self._milestone_started(req)
        self._set_milestone(req.milestone, status_store.IN_PROGRESS)
        if not self._project_started:
            self._project_started = True
            self._advance_project(ProjectState.IN_PROGRESS)
        if not started:
            self._sync_milestone_start(req)
        self._sync_requirement_start(req)

    def _milestone_started(self, req: Requirement) -> bool:
        if not self.persist:
            return False
        status = status_store.read_status(self.project_dir, self._graph.slug)
        record = status.milestones.get(req.milestone)
        return record is not None and record.status != status_store.PENDING

    def _tracker_project(self) -> str | None:
        if self.synchronizer is None:
            return None
        return self._graph.linear_project_id

    def _advance_project(self, target: ProjectState) -> None:
        project_id = self._tracker_project()
        if project_id is None:
            return
        try:
            current = self.synchronizer.current_state(project_id)
            if not is_valid_transition(current, target):
                logger.debug(f"[PROJECT] {project_id}: already {current}, not moving to {target}")
                return
            self.synchronizer.advance_project(project_id, target)
        except (TrackerError, InvalidTransition, ValueError) as e:
            logger.warning(f"Tracker sync failed (project -> {target}): {e}")

    def _sync_milestone_start(self, req: Requirement) -> None:
        project_id = self._tracker_project()
        if project_id is None or req.group is None:
            return
        group = self._graph.groups.get(req.group)
        milestone_name = group.name if group else req.group
        try:
            self.synchronizer.sync_milestone_start(project_id, milestone_name)
        except TrackerError as e:
            logger.warning(f"Tracker sync failed (milestone {milestone_name} start): {e}")

    def _sync_requirement_start(self, req: Requirement) -> None:
        if self.synchronizer is None or req.linear_issue_id is None:
            return
        try:
            self.synchronizer.sync_requirement_start(req.linear_issue_id)
        except TrackerError as e:
            logger.warning(f"Tracker sync failed (issue {req.linear_issue_id} for {req.id}): {e}")
