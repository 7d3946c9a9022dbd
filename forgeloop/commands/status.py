"""
forge status - Show milestone status per graph slug.

With LINEAR_API_KEY set, milestones of a project linked to Linear also
show how many of their issues are closed.
"""

import logging
from pathlib import Path

from forgeloop.graph import GraphError, discover_graphs, load_graph
from forgeloop.lib.config import ForgeConfig
from forgeloop.runner.flows import make_synchronizer
from forgeloop.state import ProjectStatus, discover_statuses, find_next_pending, read_status
from forgeloop.tracker import LifecycleSynchronizer, TrackerError

logger = logging.getLogger(__name__)

STATUS_MARKERS = {
    "pending": "[ ]",
    "in_progress": "[~]",
    "complete": "[x]",
}


def _milestone_names(project_dir: Path, slug: str) -> dict[str, str]:
    """Group key -> display name, which is what Linear milestones are called."""
    try:
        graph = load_graph(project_dir, slug)
    except GraphError as e:
        logger.debug(f"No graph for {slug}, using milestone keys: {e}")
        return {}
    return {key: group.name for key, group in graph.groups.items()}


def _progress_suffix(sync: LifecycleSynchronizer | None, status: ProjectStatus, name: str) -> str:
    if sync is None or not status.linear_project_id:
        return ""
    try:
        progress = sync.milestone_progress(status.linear_project_id, name)
    except TrackerError as e:
        logger.warning(f"Could not read progress for {status.slug}/{name}: {e}")
        return ""
    return f"  [{progress.completed}/{progress.total} issues closed]"


def cmd_status(args, project_dir: Path, config: ForgeConfig) -> int:
    """Print milestones for one slug (--prd) or every status file."""
    if args.prd:
        statuses = [read_status(project_dir, args.prd)]
        not_started = []
    else:
        statuses = discover_statuses(project_dir)
        known = {s.slug for s in statuses}
        not_started = [slug for slug in discover_graphs(project_dir) if slug not in known]

    if not statuses and not not_started:
        print("No status files found under .planning/status/")
        return 0

    sync = make_synchronizer()
    next_pending = {p.slug: p.milestone for p in find_next_pending(statuses)}
    for status in statuses:
        names = _milestone_names(project_dir, status.slug) if sync and status.linear_project_id else {}
        print(f"{status.project} ({status.slug}) on {status.branch}")
        for key, record in status.milestones.items():
            line = f"  {STATUS_MARKERS[record.status]} {key}"
            if record.completed_at:
                line += f"  (completed {record.completed_at})"
            line += _progress_suffix(sync, status, names.get(key, key))
            print(line)
        if status.slug in next_pending:
            print(f"  Next: {next_pending[status.slug]}")
        print()

    for slug in not_started:
        print(f"{slug}: not started (run `forge run --prd {slug}`)")

    return 0
