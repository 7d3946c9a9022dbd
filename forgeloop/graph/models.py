"""Requirement graph data models."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Requirement:
    """One unit of work. Immutable once loaded; owned by the graph."""
    id: str
    title: str
    body: str = ""
    acceptance: tuple[str, ...] = ()
    creates: frozenset[str] = frozenset()
    modifies: frozenset[str] = frozenset()
    dependencies: frozenset[str] = frozenset()
    group: str | None = None
    complete: bool = False  # already done before this run
    linear_issue_id: str | None = None

    @property
    def milestone(self) -> str:
        """Milestone key for checkpointing: the group, or the id when ungrouped."""
        return self.group or self.id


@dataclass(frozen=True)
class Group:
    key: str
    name: str
    order: float | None = None
    depends_on: tuple[str, ...] = ()
    linear_milestone_id: str | None = None
