"""
External tracker integration: forward-only project lifecycle and milestone
progress, backed by Linear.
"""

from .client import TrackerClient, TrackerError, TrackerIssue
from .lifecycle import (
    InvalidTransition,
    LifecycleSynchronizer,
    MilestoneProgress,
    ProjectFSM,
    ProjectState,
    is_valid_transition,
    parse_state,
    transition,
)
from .linear import LinearClient

__all__ = [
    "TrackerClient",
    "TrackerError",
    "TrackerIssue",
    "InvalidTransition",
    "LifecycleSynchronizer",
    "MilestoneProgress",
    "ProjectFSM",
    "ProjectState",
    "is_valid_transition",
    "parse_state",
    "transition",
    "LinearClient",
]
