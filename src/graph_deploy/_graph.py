"""
Dependency graph construction.

This module derives creation dependencies from a validated catalog. An
edge ``D -> P`` exists whenever resource D references an attribute of
resource P, either through a network rule set attachment or through a
bootstrap template placeholder.

Key functions:

- `get_refs`: Extract the references declared by one resource
- `build_graph`: Build and check the dependency graph of a catalog
- `get_dependencies`: Direct or transitive dependencies of a resource

Example:
    Inspecting the graph of a two-tier catalog::

        from graph_deploy import build_graph, get_dependencies

        graph = build_graph(catalog)
        print(graph.dependencies("ms"))  # ('db',)
        print(get_dependencies(graph, "ms", transitive=True))  # {'db', 'sg-db'}
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from graph_deploy._catalog import Catalog
from graph_deploy._errors import CyclicDependency
from graph_deploy._types import ComputeInstance, ResourceDescriptor

__all__ = [
    "RefInfo",
    "DependencyGraph",
    "get_refs",
    "get_dependencies",
    "build_graph",
]

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class RefInfo:
    """Metadata about one reference declared by a resource.

    Attributes:
        field: The descriptor field holding the reference
            (``network_rule_sets`` or ``bootstrap``).
        target: Name of the referenced resource.
        attr: The referenced attribute.

    Example:
        Inspecting RefInfo objects::

            refs = get_refs(ms)
            assert refs[0] == RefInfo("network_rule_sets", "sg-ms", "id")
            assert refs[1] == RefInfo("bootstrap", "db", "private_address")
    """

    field: str
    target: str
    attr: str


def get_refs(resource: ResourceDescriptor) -> tuple[RefInfo, ...]:
    """Extract reference information from a resource descriptor.

    Rule set attachments come first, in attachment order, followed by
    template placeholders in first-use order. Repeated placeholders are
    reported once.

    Args:
        resource: The descriptor to analyze.

    Returns:
        A tuple of `RefInfo` objects. Resources without references, such
        as network rule sets, return an empty tuple.
    """
    if not isinstance(resource, ComputeInstance):
        return ()
    refs = [RefInfo("network_rule_sets", name, "id") for name in resource.network_rule_sets]
    refs.extend(RefInfo("bootstrap", ref.resource, ref.name) for ref in resource.bootstrap.references())
    return tuple(refs)


class DependencyGraph:
    """An acyclic graph of creation dependencies over a catalog.

    Use `build_graph` to construct one; it checks for cycles. Both
    `dependencies` and `dependents` preserve catalog declaration order.
    """

    def __init__(self, catalog: Catalog, edges: dict[str, tuple[str, ...]]) -> None:
        self.catalog = catalog
        self._edges = edges
        dependents: dict[str, list[str]] = {name: [] for name in catalog.names()}
        for name in catalog.names():
            for dependency in edges[name]:
                dependents[dependency].append(name)
        self._dependents = {name: tuple(deps) for name, deps in dependents.items()}

    def names(self) -> tuple[str, ...]:
        return self.catalog.names()

    def dependencies(self, name: str) -> tuple[str, ...]:
        """Resources ``name`` depends on directly."""
        return self._edges[name]

    def dependents(self, name: str) -> tuple[str, ...]:
        """Resources that depend directly on ``name``."""
        return self._dependents[name]

    def edges(self) -> Iterator[tuple[str, str]]:
        """Yield ``(dependent, dependency)`` pairs."""
        for name in self.catalog.names():
            for dependency in self._edges[name]:
                yield name, dependency

    def batches(self) -> tuple[tuple[str, ...], ...]:
        """Group resources into ready batches.

        Batch 0 holds every resource without dependencies; batch N holds
        every resource whose dependencies all sit in batches before N.
        Within a batch resources keep declaration order.
        """
        level: dict[str, int] = {}
        for name in self.topological_order():
            level[name] = max((level[dep] + 1 for dep in self._edges[name]), default=0)
        grouped: dict[int, list[str]] = {}
        for name in self.catalog.names():
            grouped.setdefault(level[name], []).append(name)
        return tuple(tuple(grouped[i]) for i in sorted(grouped))

    def topological_order(self) -> tuple[str, ...]:
        """Dependencies before dependents; ties broken by declaration order."""
        order: list[str] = []
        visited: set[str] = set()

        def visit(name: str) -> None:
            if name in visited:
                return
            visited.add(name)
            for dependency in self._edges[name]:
                visit(dependency)
            order.append(name)

        for name in self.catalog.names():
            visit(name)
        return tuple(order)


def build_graph(catalog: Catalog) -> DependencyGraph:
    """Build the dependency graph of a catalog.

    Adds one edge per distinct referenced resource, then runs a
    depth-first traversal tracking the active recursion stack. Meeting a
    resource that is already on the stack means a cycle.

    Args:
        catalog: A validated catalog.

    Returns:
        The acyclic `DependencyGraph`.

    Raises:
        CyclicDependency: If the references form a cycle. The error carries
            the cycle path, e.g. ``['a', 'b', 'a']``.
    """
    edges: dict[str, tuple[str, ...]] = {}
    for resource in catalog:
        targets = dict.fromkeys(info.target for info in get_refs(resource))
        edges[resource.name] = tuple(targets)

    _check_acyclic(catalog.names(), edges)
    LOG.debug("Dependency graph: %s", {name: deps for name, deps in edges.items() if deps})
    return DependencyGraph(catalog, edges)


def _check_acyclic(names: tuple[str, ...], edges: dict[str, tuple[str, ...]]) -> None:
    done: set[str] = set()
    for root in names:
        if root in done:
            continue
        # Explicit stack of (node, iterator over its dependencies)
        path = [root]
        on_path = {root}
        stack = [iter(edges[root])]
        while stack:
            dependency = next(stack[-1], None)
            if dependency is None:
                stack.pop()
                finished = path.pop()
                on_path.discard(finished)
                done.add(finished)
                continue
            if dependency in on_path:
                start = path.index(dependency)
                raise CyclicDependency(path[start:] + [dependency])
            if dependency in done:
                continue
            path.append(dependency)
            on_path.add(dependency)
            stack.append(iter(edges[dependency]))


def get_dependencies(graph: DependencyGraph, name: str, transitive: bool = False) -> set[str]:
    """Compute the dependencies of a resource.

    By default, only direct dependencies are returned. Set
    ``transitive=True`` to compute the full transitive closure.

    Args:
        graph: The dependency graph.
        name: Name of the resource to analyze.
        transitive: If True, include all transitive dependencies.

    Returns:
        A set of resource names.

    Example:
        Direct and transitive dependencies::

            get_dependencies(graph, "ms")                   # {'db', 'sg-ms'}
            get_dependencies(graph, "ms", transitive=True)  # {'db', 'sg-db', 'sg-ms'}
    """
    deps = set(graph.dependencies(name))
    if not transitive:
        return deps

    visited: set[str] = set()
    to_visit = list(deps)
    while to_visit:
        current = to_visit.pop()
        if current in visited:
            continue
        visited.add(current)
        to_visit.extend(set(graph.dependencies(current)) - visited)
    return visited
