"""Build the dependency graph of definitions and compute build order."""

import difflib
import heapq
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .definition import Definition
from .errors import CycleDetected, DefinitionNotFound, UnknownDependency


def suggest_name(name: str, candidates: Iterable[str]) -> Optional[str]:
    """Closest known definition name, for 'did you mean' hints."""
    matches = difflib.get_close_matches(name, sorted(candidates), n=1, cutoff=0.6)
    return matches[0] if matches else None


class DependencyGraph:
    """Dependency graph induced by the requested targets.

    Edges point from a definition to the definitions it depends on. Only
    the requested targets and their transitive dependencies become nodes.
    All validation happens in the constructor, so holding a graph means it
    is acyclic and fully resolved.
    """

    def __init__(
        self,
        definitions: Mapping[str, Definition],
        targets: Optional[Iterable[str]] = None,
    ):
        self.definitions = dict(definitions)
        self.targets: List[str] = sorted(set(targets)) if targets is not None else sorted(self.definitions)
        self.nodes: Set[str] = set()
        self.edges: Dict[str, Set[str]] = defaultdict(set)  # node -> set of dependencies
        self.reverse_edges: Dict[str, Set[str]] = defaultdict(set)  # dependency -> set of dependents
        self._build()

    def _build(self):
        """Resolve targets, walk depends_on, then reject cycles."""
        for name in self.targets:
            if name not in self.definitions:
                raise DefinitionNotFound(name, suggestion=suggest_name(name, self.definitions))

        stack = list(reversed(self.targets))
        while stack:
            current = stack.pop()
            if current in self.nodes:
                continue
            self.nodes.add(current)
            self.edges[current] = set()
            for dep in self.definitions[current].depends_on:
                if dep not in self.definitions:
                    raise UnknownDependency(dep, dependent=current)
                self.edges[current].add(dep)
                self.reverse_edges[dep].add(current)
                if dep not in self.nodes:
                    stack.append(dep)

        cycles = self._detect_cycles()
        if cycles:
            raise CycleDetected(cycles[0])

    def _detect_cycles(self) -> List[List[str]]:
        """Detect cycles using DFS.

        Returns:
            List holding the first cycle found (node names, closing node
            repeated), or an empty list if the graph is acyclic.
        """
        cycles = []
        WHITE = 0  # Unvisited
        GRAY = 1   # Currently being visited (in recursion stack)
        BLACK = 2  # Fully visited

        color = {node: WHITE for node in self.nodes}

        def dfs(node: str, path: List[str]) -> None:
            color[node] = GRAY
            path.append(node)

            for dep in sorted(self.get_dependencies(node)):  # Sort for deterministic order
                if cycles:
                    return
                if color[dep] == WHITE:
                    dfs(dep, path)
                elif color[dep] == GRAY:
                    cycle_start = path.index(dep)
                    cycles.append(path[cycle_start:] + [dep])
                    return

            color[node] = BLACK
            path.pop()

        for node in sorted(self.nodes):
            if color[node] == WHITE:
                dfs(node, [])
                if cycles:
                    break

        return cycles

    def build_order(self) -> List[str]:
        """Topological order, dependencies first, ties broken by name."""
        remaining = {node: len(self.edges[node]) for node in self.nodes}
        ready = [node for node, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order = []
        while ready:
            node = heapq.heappop(ready)
            order.append(node)
            for dependent in self.get_dependents(node):
                remaining[dependent] -= 1
                if remaining[dependent] == 0:
                    heapq.heappush(ready, dependent)
        return order

    def get_dependencies(self, node: str) -> Set[str]:
        """Get direct dependencies of a node."""
        return self.edges.get(node, set())

    def get_dependents(self, node: str) -> Set[str]:
        """Get nodes that depend on this node (reverse edges)."""
        return self.reverse_edges.get(node, set())

    def get_transitive_dependencies(self, node: str) -> Set[str]:
        """Get all transitive dependencies (recursive)."""
        return self._walk(node, self.get_dependencies)

    def get_transitive_dependents(self, node: str) -> Set[str]:
        """Get all transitive dependents (what depends on this node, recursively)."""
        return self._walk(node, self.get_dependents)

    def _walk(self, node: str, step) -> Set[str]:
        visited = set()
        stack = [node]
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            for nxt in step(current):
                if nxt not in visited:
                    stack.append(nxt)
        visited.discard(node)  # Don't include the node itself
        return visited
