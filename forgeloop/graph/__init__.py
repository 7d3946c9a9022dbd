"""
Requirement graph: models, dependency ordering and on-disk loading.
"""

from .graph import (
    DanglingDependency,
    DependencyCycle,
    GraphError,
    GraphLoadError,
    RequirementGraph,
)
from .models import Group, Requirement
from .reader import ProjectGraph, discover_graphs, load_graph, parse_frontmatter

__all__ = [
    "DanglingDependency",
    "DependencyCycle",
    "GraphError",
    "GraphLoadError",
    "RequirementGraph",
    "Group",
    "Requirement",
    "ProjectGraph",
    "discover_graphs",
    "load_graph",
    "parse_frontmatter",
]
