"""
Provides the dependency graph between the resources of a catalog.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from keel.resources.api import Ref, Resource
from keel.utils import CompilationError, CycleError, rank_sort, transitive_dependencies

@dataclass(frozen=True)
class Edge:
    """
    A directed edge between two resources. The source is converged before the target.
    If `notify` is set, the target is refreshed whenever the source changes.
    """
    source: Ref
    target: Ref
    notify: bool = False

    def __str__(self) -> str:
        arrow = "~>" if self.notify else "->"
        return f"{self.source} {arrow} {self.target}"

def _find_cycle(vertices: list[Ref], childs_of: dict[Ref, list[Ref]]) -> list[Ref]:
    """Returns the vertices of a cycle in the graph, with the first vertex repeated at the end."""
    visited: set[Ref] = set()
    for start in vertices:
        if start in visited:
            continue
        # Iterative depth first search, keeping the current path on a stack.
        path: list[Ref] = [start]
        on_path = {start}
        iters = [iter(childs_of[start])]
        visited.add(start)
        while len(iters) > 0:
            child = next(iters[-1], None)
            if child is None:
                iters.pop()
                on_path.discard(path.pop())
                continue
            if child in on_path:
                return path[path.index(child):] + [child]
            if child not in visited:
                visited.add(child)
                path.append(child)
                on_path.add(child)
                iters.append(iter(childs_of[child]))
    return []

class DependencyGraph:
    """
    The directed acyclic graph of ordering and notification edges between resources.
    Use `DependencyGraph.build()` to create one from a list of resources.
    """

    def __init__(self, refs: list[Ref], edges: Iterable[Edge]):
        self.index: dict[Ref, int] = {r: i for i,r in enumerate(refs)}
        """The declaration index of each resource."""
        self._edges: dict[tuple[Ref, Ref], Edge] = {}
        self._preds: dict[Ref, list[Ref]] = {r: [] for r in refs}
        self._succs: dict[Ref, list[Ref]] = {r: [] for r in refs}

        for e in edges:
            existing = self._edges.get((e.source, e.target))
            if existing is None:
                self._preds[e.target].append(e.source)
                self._succs[e.source].append(e.target)
            elif existing.notify:
                continue
            self._edges[(e.source, e.target)] = e

        # Keep adjacency in declaration order, so that everything derived is deterministic.
        for adjacency in [self._preds, self._succs]:
            for r in adjacency:
                adjacency[r].sort(key=lambda x: self.index[x])

        try:
            ranks = rank_sort(refs, lambda r: self._preds[r], lambda r: self._succs[r])
        except CycleError:
            cycle = _find_cycle(refs, self._succs)
            raise CompilationError(f"dependency cycle: {' -> '.join(str(r) for r in cycle)}") from None

        self.ranks: dict[Ref, int] = ranks
        self.order: list[Ref] = sorted(refs, key=lambda r: (ranks[r], self.index[r]))
        """All resources in topological order. Ties are broken by declaration order."""

    @staticmethod
    def build(resources: Iterable[Resource]) -> DependencyGraph:
        """
        Builds the dependency graph from the relationships declared by the given resources.

        Parameters
        ----------
        resources
            The resources in declaration order.

        Returns
        -------
        DependencyGraph
            The graph.

        Raises
        ------
        CompilationError
            A relationship references an unknown resource or the resource itself,
            or the relationships form a cycle.
        """
        resources = list(resources)
        refs = [r.ref for r in resources]
        known = set(refs)
        if len(known) != len(refs):
            raise CompilationError("duplicate resource declaration")

        edges = []
        for res in resources:
            for rel, target in [(rel, t) for rel in ["require", "before", "notify", "subscribe"] for t in getattr(res, rel)]:
                if target == res.ref:
                    raise CompilationError(f"{res.ref} cannot {rel} itself")
                if target not in known:
                    raise CompilationError(f"{res.ref} has '{rel}' on unknown resource {target}")

                if rel == "require":
                    edges.append(Edge(target, res.ref))
                elif rel == "before":
                    edges.append(Edge(res.ref, target))
                elif rel == "notify":
                    edges.append(Edge(res.ref, target, notify=True))
                else:
                    edges.append(Edge(target, res.ref, notify=True))

        return DependencyGraph(refs, edges)

    def __contains__(self, ref: Ref) -> bool:
        return ref in self.index

    @property
    def edges(self) -> list[Edge]:
        """All edges, ordered by source and target declaration order."""
        return sorted(self._edges.values(), key=lambda e: (self.index[e.source], self.index[e.target]))

    def edge(self, source: Ref, target: Ref) -> Optional[Edge]:
        """Returns the edge between the given resources, if any."""
        return self._edges.get((source, target))

    def predecessors(self, ref: Ref) -> list[Ref]:
        """Returns the resources that must be converged directly before the given one."""
        return list(self._preds[ref])

    def successors(self, ref: Ref) -> list[Ref]:
        """Returns the resources that must be converged directly after the given one."""
        return list(self._succs[ref])

    def notifiers(self, ref: Ref) -> list[Ref]:
        """Returns the predecessors whose changes cause the given resource to be refreshed."""
        return [p for p in self._preds[ref] if self._edges[(p, ref)].notify]

    def ancestors(self, ref: Ref) -> set[Ref]:
        """Returns all resources that are transitively converged before the given one."""
        return transitive_dependencies(set(self._preds[ref]), lambda r: self._preds[r])

    def independent(self, a: Ref, b: Ref) -> bool:
        """Returns whether neither of the given resources transitively depends on the other."""
        return a not in self.ancestors(b) and b not in self.ancestors(a)
