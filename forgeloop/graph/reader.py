"""
Load a requirement graph from .planning/graph/<slug>/.

Layout:
    _index.yaml         project metadata, groups, requirement status and edges
    overview.md         project overview text
    requirements/*.md   YAML frontmatter (id, title, files, acceptance) + body
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

import yaml

from forgeloop.lib import validate
from .graph import GraphLoadError, RequirementGraph
from .models import Group, Requirement

logger = logging.getLogger(__name__)

GRAPH_DIR = Path(".planning") / "graph"


@dataclass
class ProjectGraph:
    """A loaded graph directory: index metadata, overview and requirements."""
    project: str
    slug: str
    branch: str
    created_at: str
    overview: str
    graph: RequirementGraph
    groups: dict[str, Group] = field(default_factory=dict)
    linear_project_id: str | None = None
    linear_team_id: str | None = None


def graph_dir(project_dir: Path, slug: str) -> Path:
    return project_dir / GRAPH_DIR / slug


def _stringify_dates(value):
    """YAML turns unquoted timestamps into date objects; schemas expect strings."""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _stringify_dates(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_stringify_dates(v) for v in value]
    return value


def parse_frontmatter(content: str) -> tuple[dict, str]:
    """Split a markdown file into (frontmatter, body)."""
    content = content.replace("\r\n", "\n")
    if not content.startswith("---\n"):
        raise ValueError("missing YAML frontmatter opening ---")
    end = content.find("\n---", 3)
    if end == -1:
        raise ValueError("missing YAML frontmatter closing ---")
    data = yaml.safe_load(content[4:end]) or {}
    if not isinstance(data, dict):
        raise ValueError("frontmatter is not a mapping")
    body = content[end + 4:].strip()
    return _stringify_dates(data), body


def load_index(project_dir: Path, slug: str) -> dict:
    """Load and validate _index.yaml."""
    path = graph_dir(project_dir, slug) / "_index.yaml"
    if not path.exists():
        raise GraphLoadError(f"Graph index not found: {path}")
    try:
        data = _stringify_dates(yaml.safe_load(path.read_text()))
    except yaml.YAMLError as e:
        raise GraphLoadError(f"Invalid YAML in {path}: {e}") from None
    try:
        validate.validate(data, "graph_index")
    except validate.SchemaError as e:
        raise GraphLoadError(f"Invalid graph index {path}: {e.message} at {e.path}") from None
    return data


def _load_requirement_files(req_dir: Path) -> dict[str, tuple[dict, str]]:
    """Parse every requirements/*.md, keyed by frontmatter id."""
    found: dict[str, tuple[dict, str]] = {}
    if not req_dir.is_dir():
        return found

    for path in sorted(req_dir.glob("*.md")):
        try:
            frontmatter, body = parse_frontmatter(path.read_text())
        except (ValueError, yaml.YAMLError) as e:
            raise GraphLoadError(f"Invalid requirement file {path}: {e}") from None
        try:
            validate.validate(frontmatter, "requirement")
        except validate.SchemaError as e:
            raise GraphLoadError(f"Invalid requirement file {path}: {e.message} at {e.path}") from None
        rid = frontmatter["id"]
        if rid in found:
            raise GraphLoadError(f'Requirement "{rid}" is defined in more than one file ({path.name})')
        found[rid] = (frontmatter, body)
    return found


def load_graph(project_dir: Path, slug: str) -> ProjectGraph:
    """
    Load the graph for slug, joining index metadata and requirement files.

    Requirements are declared in index order. `rejected` requirements are
    excluded and edges to them dropped; `complete` ones are kept as prior
    work. Group dependencies become edges from every requirement of the
    group to every requirement of the groups it depends on.

    Raises:
        GraphLoadError: Missing/invalid index, overview or requirement file
        DanglingDependency: An edge points at an unknown requirement
        DependencyCycle: Edges form a cycle
    """
    base = graph_dir(project_dir, slug)
    index = load_index(project_dir, slug)

    overview_path = base / "overview.md"
    if not overview_path.exists():
        raise GraphLoadError(f"Overview not found: {overview_path}")
    overview = overview_path.read_text().strip()

    groups = {
        key: Group(
            key=key,
            name=meta["name"],
            order=meta.get("order"),
            depends_on=tuple(meta.get("dependsOn", [])),
            linear_milestone_id=meta.get("linearMilestoneId"),
        )
        for key, meta in index["groups"].items()
    }

    files = _load_requirement_files(base / "requirements")
    entries = index["requirements"]
    rejected = {rid for rid, meta in entries.items() if meta["status"] == "rejected"}

    for rid in files:
        if rid not in entries:
            logger.warning(f'Requirement file "{rid}" is not tracked in {slug}/_index.yaml, ignoring')

    members: dict[str, list[str]] = {}
    for rid, meta in entries.items():
        if rid not in rejected:
            members.setdefault(meta["group"], []).append(rid)

    requirements = []
    for rid, meta in entries.items():
        if rid in rejected:
            continue
        if rid not in files:
            raise GraphLoadError(f'Requirement "{rid}" is in the index but has no matching .md file')
        if meta["group"] not in groups:
            raise GraphLoadError(f'Requirement "{rid}" references unknown group "{meta["group"]}"')

        frontmatter, body = files[rid]
        deps = set(meta.get("dependsOn", [])) | set(frontmatter.get("dependsOn", []))
        for dep_group in groups[meta["group"]].depends_on:
            if dep_group not in groups:
                raise GraphLoadError(f'Group "{meta["group"]}" depends on unknown group "{dep_group}"')
            deps.update(members.get(dep_group, []))

        dropped = deps & rejected
        if dropped:
            logger.warning(f"{rid}: ignoring dependencies on rejected requirements {sorted(dropped)}")

        file_scope = frontmatter.get("files", {})
        requirements.append(Requirement(
            id=rid,
            title=frontmatter["title"],
            body=body,
            acceptance=tuple(frontmatter.get("acceptance", [])),
            creates=frozenset(file_scope.get("creates", [])),
            modifies=frozenset(file_scope.get("modifies", [])),
            dependencies=frozenset(deps - rejected),
            group=meta["group"],
            complete=meta["status"] == "complete",
            linear_issue_id=meta.get("linearIssueId"),
        ))

    linear = index.get("linear") or {}
    project_graph = ProjectGraph(
        project=index["project"],
        slug=index["slug"],
        branch=index["branch"],
        created_at=index["createdAt"],
        overview=overview,
        graph=RequirementGraph(requirements),
        groups=groups,
        linear_project_id=linear.get("projectId"),
        linear_team_id=linear.get("teamId"),
    )
    logger.info(f"Loaded graph {slug}: {len(requirements)} requirements, {len(groups)} groups")
    return project_graph


def discover_graphs(project_dir: Path) -> list[str]:
    """Slugs under .planning/graph/ with a valid _index.yaml."""
    base = project_dir / GRAPH_DIR
    if not base.is_dir():
        return []
    slugs = []
    for entry in sorted(base.iterdir()):
        if not entry.is_dir():
            continue
        try:
            load_index(project_dir, entry.name)
        except GraphLoadError as e:
            logger.debug(f"Skipping {entry.name}: {e}")
            continue
        slugs.append(entry.name)
    return slugs
