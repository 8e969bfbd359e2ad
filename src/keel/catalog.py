"""
Provides the catalog, the compiled and immutable set of resources for one host and one run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from keel.graph import DependencyGraph
from keel.resources.api import Ref, Resource
from keel.utils import CompilationError

@dataclass(frozen=True)
class Catalog:
    """
    The compiled set of resources for one host. The resources are stored in
    topological order. Two catalogs compiled from the same inputs compare equal.
    """
    host: str
    """The name of the host this catalog was compiled for."""
    resources: tuple[Resource, ...]
    """All resources in topological order."""
    parameters: dict[str, Any] = field(default_factory=dict)
    """The resolved parameters, including derived values."""
    graph: DependencyGraph = field(default=None, compare=False, repr=False) # type: ignore[assignment]
    """The dependency graph between the resources."""

    def __iter__(self) -> Iterator[Resource]:
        return iter(self.resources)

    def __len__(self) -> int:
        return len(self.resources)

    def __contains__(self, ref: Ref) -> bool:
        return self.get(ref) is not None

    def get(self, ref: Ref) -> Optional[Resource]:
        """Returns the resource with the given identity, or None."""
        for r in self.resources:
            if r.ref == ref:
                return r
        return None

    def __getitem__(self, ref: Ref) -> Resource:
        res = self.get(ref)
        if res is None:
            raise KeyError(str(ref))
        return res

    def of_kind(self, kind: str) -> list[Resource]:
        """Returns all resources of the given kind in topological order."""
        return [r for r in self.resources if r.kind == kind]

class CatalogBuilder:
    """Collects resources in declaration order and compiles them into a catalog."""

    def __init__(self, host: str):
        self.host = host
        self.resources: dict[Ref, Resource] = {}

    def add(self, resource: Resource) -> Resource:
        """
        Adds a resource to the catalog.

        Parameters
        ----------
        resource
            The resource to add.

        Returns
        -------
        Resource
            The given resource, so that it can be referenced by later declarations.

        Raises
        ------
        CompilationError
            A resource with the same identity was already declared.
        """
        if resource.ref in self.resources:
            raise CompilationError(f"duplicate declaration of {resource.ref}")
        self.resources[resource.ref] = resource
        return resource

    def compile(self, parameters: Optional[dict[str, Any]] = None) -> Catalog:
        """
        Builds the dependency graph and returns the immutable catalog.

        Raises
        ------
        CompilationError
            The relationships between the resources are invalid.
        """
        graph = DependencyGraph.build(self.resources.values())
        return Catalog(host=self.host,
                       resources=tuple(self.resources[r] for r in graph.order),
                       parameters=dict(parameters or {}),
                       graph=graph)
