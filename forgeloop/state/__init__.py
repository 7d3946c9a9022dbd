"""
Durable project status persistence.
"""

from .status import (
    COMPLETE,
    IN_PROGRESS,
    MILESTONE_STATUSES,
    PENDING,
    MilestoneRecord,
    PendingMilestone,
    ProjectStatus,
    StatusNotFound,
    StatusValidationError,
    discover_statuses,
    find_next_pending,
    read_status,
    status_path,
    update_milestone_status,
    write_status,
)

__all__ = [
    "COMPLETE",
    "IN_PROGRESS",
    "MILESTONE_STATUSES",
    "PENDING",
    "MilestoneRecord",
    "PendingMilestone",
    "ProjectStatus",
    "StatusNotFound",
    "StatusValidationError",
    "discover_statuses",
    "find_next_pending",
    "read_status",
    "status_path",
    "update_milestone_status",
    "write_status",
]
