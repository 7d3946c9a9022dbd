"""
Status store: one JSON file per slug under .planning/status/.

Writes are atomic (temp file in the same directory, fsync, rename), so a
reader sees either the previous or the new file and never a partial one.
Reads never substitute defaults: a missing file raises StatusNotFound and a
malformed one raises StatusValidationError.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from forgeloop.lib import validate
from forgeloop.lib.atomic import atomic_write_text

logger = logging.getLogger(__name__)

STATUS_DIR = Path(".planning") / "status"

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETE = "complete"
MILESTONE_STATUSES = (PENDING, IN_PROGRESS, COMPLETE)


class StatusNotFound(Exception):
    """No status file exists for the slug."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Status file not found: {path}")


class StatusValidationError(Exception):
    """The status file does not match the ProjectStatus shape."""

    def __init__(self, path: Path, message: str):
        self.path = path
        self.message = message
        super().__init__(f"Invalid status file {path}: {message}")


@dataclass
class MilestoneRecord:
    status: str = PENDING                          # pending, in_progress, complete
    linear_issue_ids: tuple[str, ...] | None = None
    completed_at: str | None = None                # ISO timestamp when complete

    @classmethod
    def from_dict(cls, data: dict) -> "MilestoneRecord":
        ids = data.get("linearIssueIds")
        return cls(
            status=data["status"],
            linear_issue_ids=tuple(ids) if ids is not None else None,
            completed_at=data.get("completedAt"),
        )

    def to_dict(self) -> dict:
        data = {"status": self.status}
        if self.linear_issue_ids is not None:
            data["linearIssueIds"] = list(self.linear_issue_ids)
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        return data


@dataclass
class ProjectStatus:
    """Durable progress for one (project, slug)."""
    project: str
    slug: str
    branch: str
    created_at: str
    milestones: dict[str, MilestoneRecord] = field(default_factory=dict)
    linear_project_id: str | None = None
    linear_team_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "ProjectStatus":
        return cls(
            project=data["project"],
            slug=data["slug"],
            branch=data["branch"],
            created_at=data["createdAt"],
            milestones={k: MilestoneRecord.from_dict(v) for k, v in data["milestones"].items()},
            linear_project_id=data.get("linearProjectId"),
            linear_team_id=data.get("linearTeamId"),
        )

    def to_dict(self) -> dict:
        data = {
            "project": self.project,
            "slug": self.slug,
            "branch": self.branch,
            "createdAt": self.created_at,
        }
        if self.linear_project_id is not None:
            data["linearProjectId"] = self.linear_project_id
        if self.linear_team_id is not None:
            data["linearTeamId"] = self.linear_team_id
        data["milestones"] = {k: m.to_dict() for k, m in self.milestones.items()}
        return data


def status_path(project_dir: Path, slug: str) -> Path:
    return project_dir / STATUS_DIR / f"{slug}.json"


def read_status(project_dir: Path, slug: str) -> ProjectStatus:
    """
    Read and validate the status for slug.

    Raises:
        StatusNotFound: No status file for slug
        StatusValidationError: File is not valid JSON or fails the schema
    """
    path = status_path(project_dir, slug)
    try:
        raw = path.read_text()
    except FileNotFoundError:
        raise StatusNotFound(path) from None

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise StatusValidationError(path, f"invalid JSON: {e}") from None
    try:
        validate.validate(data, "status")
    except validate.SchemaError as e:
        raise StatusValidationError(path, f"{e.message} at {e.path}") from None

    return ProjectStatus.from_dict(data)


def write_status(project_dir: Path, slug: str, status: ProjectStatus) -> Path:
    """Validate and atomically write the status for slug. Returns the path."""
    path = status_path(project_dir, slug)
    data = status.to_dict()
    try:
        validate.validate_before_write(data, "status", path)
    except validate.SchemaError as e:
        raise StatusValidationError(path, e.message) from None

    atomic_write_text(path, json.dumps(data, indent=2) + "\n")
    logger.debug(f"Wrote status {path}")
    return path


def update_milestone_status(project_dir: Path, slug: str, milestone: str, status: str) -> ProjectStatus:
    """Set one milestone's status (creating the record if needed) and persist."""
    if status not in MILESTONE_STATUSES:
        raise ValueError(f"Invalid milestone status: {status}")

    project_status = read_status(project_dir, slug)
    record = project_status.milestones.setdefault(milestone, MilestoneRecord())
    previous = record.status
    record.status = status
    if status == COMPLETE:
        record.completed_at = datetime.now(timezone.utc).isoformat()

    write_status(project_dir, slug, project_status)
    logger.info(f"[MILESTONE] {slug}/{milestone}: {previous} -> {status}")
    return project_status


def discover_statuses(project_dir: Path) -> list[ProjectStatus]:
    """All valid status files. Invalid ones are logged and skipped."""
    directory = project_dir / STATUS_DIR
    if not directory.is_dir():
        return []

    statuses = []
    for path in sorted(directory.glob("*.json")):
        try:
            statuses.append(read_status(project_dir, path.stem))
        except (StatusNotFound, StatusValidationError) as e:
            logger.warning(f"Skipping {path.name}: {e}")
    return statuses


@dataclass
class PendingMilestone:
    slug: str
    milestone: str
    status: ProjectStatus


def find_next_pending(statuses: list[ProjectStatus]) -> list[PendingMilestone]:
    """First pending milestone of each status, in milestone declaration order."""
    results = []
    for status in statuses:
        for key, record in status.milestones.items():
            if record.status == PENDING:
                results.append(PendingMilestone(status.slug, key, status))
                break
    return results
