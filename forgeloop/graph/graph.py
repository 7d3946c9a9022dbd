"""
Requirement dependency graph.

Structural problems (dangling dependencies, cycles) are detected once at
construction, before any scheduling happens. Traversal order is a
topological sort that breaks ties by declaration order, so reruns over the
same graph visit requirements in the same order.
"""

from typing import Iterable, Iterator

from .models import Requirement


class GraphError(Exception):
    """Base class for structural graph errors."""


class GraphLoadError(GraphError):
    """The graph directory could not be read or parsed."""


class DanglingDependency(GraphError):
    """A requirement depends on an id that is not in the graph."""

    def __init__(self, requirement: str, missing: str):
        self.requirement = requirement
        self.missing = missing
        super().__init__(f'Requirement "{requirement}" depends on unknown requirement "{missing}"')


class DependencyCycle(GraphError):
    """Declared dependencies form a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")


class RequirementGraph:
    """Immutable collection of requirements with dependency edges."""

    def __init__(self, requirements: Iterable[Requirement]):
        self._requirements: dict[str, Requirement] = {}
        for req in requirements:
            if req.id in self._requirements:
                raise GraphLoadError(f'Duplicate requirement id "{req.id}"')
            self._requirements[req.id] = req

        self._dependents: dict[str, list[str]] = {rid: [] for rid in self._requirements}
        for req in self._requirements.values():
            for dep in sorted(req.dependencies, key=self._declared_position):
                if dep not in self._requirements:
                    raise DanglingDependency(req.id, dep)
                self._dependents[dep].append(req.id)

        cycle = self._find_cycle()
        if cycle:
            raise DependencyCycle(cycle)
        self._order = self._topological_order()

    def _declared_position(self, rid: str) -> tuple[int, str]:
        ids = list(self._requirements)
        return (ids.index(rid), rid) if rid in self._requirements else (len(ids), rid)

    def __iter__(self) -> Iterator[Requirement]:
        return iter(self._requirements.values())

    def __len__(self) -> int:
        return len(self._requirements)

    def __contains__(self, rid: str) -> bool:
        return rid in self._requirements

    def __getitem__(self, rid: str) -> Requirement:
        return self._requirements[rid]

    def ids(self) -> list[str]:
        """Requirement ids in declaration order."""
        return list(self._requirements)

    def _find_cycle(self) -> list[str] | None:
        """DFS with white/gray/black marking. Returns the cycle path, closed."""
        white, gray, black = 0, 1, 2
        color = {rid: white for rid in self._requirements}
        path: list[str] = []

        def visit(rid: str) -> list[str] | None:
            color[rid] = gray
            path.append(rid)
            for dep in sorted(self._requirements[rid].dependencies, key=self._declared_position):
                if color[dep] == gray:
                    return path[path.index(dep):] + [dep]
                if color[dep] == white:
                    found = visit(dep)
                    if found:
                        return found
            path.pop()
            color[rid] = black
            return None

        for rid in self._requirements:
            if color[rid] == white:
                found = visit(rid)
                if found:
                    return found
        return None

    def _topological_order(self) -> list[str]:
        """Kahn's algorithm; among ready requirements the earliest declared goes first."""
        position = {rid: i for i, rid in enumerate(self._requirements)}
        remaining = {rid: len(req.dependencies) for rid, req in self._requirements.items()}
        ready = sorted((rid for rid, n in remaining.items() if n == 0), key=position.get)
        order = []

        while ready:
            rid = ready.pop(0)
            order.append(rid)
            for dependent in self._dependents[rid]:
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    ready.append(dependent)
            ready.sort(key=position.get)

        return order

    def topological_order(self) -> list[Requirement]:
        """Every requirement after all of its dependencies."""
        return [self._requirements[rid] for rid in self._order]

    def dependencies_of(self, rid: str) -> list[Requirement]:
        """Direct dependencies, in topological order."""
        deps = self._requirements[rid].dependencies
        return [self._requirements[d] for d in self._order if d in deps]

    def dependents_of(self, rid: str) -> list[Requirement]:
        """Requirements that directly depend on rid."""
        return [self._requirements[d] for d in self._dependents[rid]]

    def transitive_dependents(self, rid: str) -> list[Requirement]:
        """Everything that depends on rid directly or indirectly, in topological order."""
        seen: set[str] = set()
        stack = list(self._dependents[rid])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents[current])
        return [self._requirements[d] for d in self._order if d in seen]

    def group_members(self, group: str) -> list[Requirement]:
        """Requirements whose milestone key is `group`, in declaration order."""
        return [r for r in self._requirements.values() if r.milestone == group]
