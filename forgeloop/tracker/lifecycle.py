"""Forward-only project lifecycle, synchronized with the external tracker.

Project states form a total order:

    Backlog < Planned < In Progress < In Review < Done

A transition is allowed only to a strictly higher-ranked state. Backward,
lateral and same-state moves are all rejected with InvalidTransition.

The state machine is built with the transitions library: one trigger per
destination (advance_to_<state>) with every lower-ranked state as a
source, so anything else is simply not a transition the machine knows.

Milestone progress is recomputed from the tracker on every call; nothing
derived is cached locally.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from transitions import Machine, MachineError

from .client import TrackerClient, TrackerIssue

logger = logging.getLogger(__name__)


class ProjectState(Enum):
    BACKLOG = "Backlog"
    PLANNED = "Planned"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    DONE = "Done"

    @property
    def rank(self) -> int:
        return list(ProjectState).index(self)

    def __str__(self) -> str:
        return self.value


def _normalize(name: str) -> str:
    return name.replace(" ", "").replace("_", "").lower()


_BY_NAME = {_normalize(s.value): s for s in ProjectState}


def parse_state(name: "str | ProjectState") -> ProjectState:
    """Parse "In Progress", "in_progress", "InProgress" etc. Raises ValueError."""
    if isinstance(name, ProjectState):
        return name
    state = _BY_NAME.get(_normalize(name))
    if state is None:
        raise ValueError(f"Unknown project state: {name!r}")
    return state


class InvalidTransition(Exception):
    """Raised when a project transition is not strictly forward."""

    def __init__(self, from_state: ProjectState, to_state: ProjectState, project_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.project_id = project_id
        super().__init__(f"Invalid project transition: {from_state.value} -> {to_state.value}")


STATES = [s.name for s in ProjectState]


def _build_transitions() -> list[dict]:
    """One advance_to_<dest> trigger per state, sourced from every lower rank."""
    transitions = []
    for dest in ProjectState:
        sources = [s.name for s in ProjectState if s.rank < dest.rank]
        if sources:
            transitions.append({
                "trigger": f"advance_to_{dest.name.lower()}",
                "source": sources,
                "dest": dest.name,
            })
    return transitions


TRANSITIONS = _build_transitions()

# (source, dest) -> trigger name
TRIGGER_FOR = {
    (source, t["dest"]): t["trigger"]
    for t in TRANSITIONS
    for source in t["source"]
}


class ProjectFSM:
    """State machine for one external project."""

    def __init__(self, initial: ProjectState, project_id: str = ""):
        self.project_id = project_id
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial.name,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    @property
    def current(self) -> ProjectState:
        return ProjectState[self.state]

    def on_state_change(self, event) -> None:
        from_state = ProjectState[event.transition.source]
        to_state = ProjectState[event.transition.dest]
        logger.info(f"[PROJECT] {self.project_id or '-'}: {from_state} -> {to_state}")

    def advance(self, target: ProjectState) -> ProjectState:
        """Move to target or raise InvalidTransition."""
        current = self.current
        trigger = TRIGGER_FOR.get((current.name, target.name))
        if trigger is None:
            raise InvalidTransition(current, target, self.project_id)
        try:
            getattr(self, trigger)()
        except MachineError as e:
            raise InvalidTransition(current, target, self.project_id) from e
        return self.current


def transition(current: "str | ProjectState", target: "str | ProjectState") -> ProjectState:
    """
    Validate a forward move and return the new state.

    Raises:
        InvalidTransition: rank(target) <= rank(current)
        ValueError: Unknown state name
    """
    return ProjectFSM(parse_state(current)).advance(parse_state(target))


def is_valid_transition(current: "str | ProjectState", target: "str | ProjectState") -> bool:
    try:
        return (parse_state(current).name, parse_state(target).name) in TRIGGER_FOR
    except ValueError:
        return False


CLOSED_ISSUE_STATES = {"done", "canceled", "cancelled"}
STARTED_ISSUE_STATE = "In Progress"


def is_closed(issue: TrackerIssue) -> bool:
    return issue.state.lower() in CLOSED_ISSUE_STATES


@dataclass(frozen=True)
class MilestoneProgress:
    milestone: str
    total: int
    completed: int

    @property
    def ratio(self) -> float:
        return self.completed / self.total if self.total else 0.0


class LifecycleSynchronizer:
    """Forward-only project state and milestone progress against a tracker."""

    def __init__(self, client: TrackerClient):
        self.client = client

    def current_state(self, project_id: str) -> ProjectState:
        return parse_state(self.client.get_project_state(project_id))

    def advance_project(self, project_id: str, target: "str | ProjectState") -> ProjectState:
        """
        Move the project forward to target in the tracker.

        Raises:
            InvalidTransition: target is not strictly ahead of the current state
            TrackerError: The tracker call failed
        """
        fsm = ProjectFSM(self.current_state(project_id), project_id)
        new_state = fsm.advance(parse_state(target))
        self.client.set_project_state(project_id, new_state.value)
        return new_state

    def milestone_progress(self, project_id: str, milestone: str) -> MilestoneProgress:
        """Done or Canceled issues over all issues in the milestone, read fresh."""
        issues = self.client.list_milestone_issues(project_id, milestone)
        completed = sum(1 for issue in issues if is_closed(issue))
        return MilestoneProgress(milestone=milestone, total=len(issues), completed=completed)

    def sync_milestone_start(self, project_id: str, milestone: str) -> list[str]:
        """Move the milestone's open, not-yet-started issues to In Progress."""
        moved = []
        for issue in self.client.list_milestone_issues(project_id, milestone):
            if is_closed(issue) or issue.state in (STARTED_ISSUE_STATE, ProjectState.IN_REVIEW.value):
                continue
            self.client.set_issue_state(issue.id, STARTED_ISSUE_STATE)
            moved.append(issue.id)
        if moved:
            logger.info(f"[MILESTONE] {milestone}: moved {len(moved)} issue(s) to {STARTED_ISSUE_STATE}")
        return moved

    def sync_requirement_start(self, issue_id: str) -> None:
        """Move one requirement's own issue to In Progress."""
        self.client.set_issue_state(issue_id, STARTED_ISSUE_STATE)
        logger.info(f"[ISSUE] {issue_id}: moved to {STARTED_ISSUE_STATE}")
