"""Dependency graph utilities."""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from arm_provisioner.engine.errors import (
    DependencyCycleError,
    DuplicateAddressError,
    UnknownReferenceError,
    ValidationError,
)
from arm_provisioner.resources.expressions import ExpressionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from arm_provisioner.resources.base import Resource


class DependencyGraph:
    """A directed graph where nodes depend on other nodes.

    Ties between independent nodes are broken by priority, then by the order
    in which nodes were given, so the same input always yields the same order.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        dependencies: Mapping[str, Iterable[str]],
        priorities: Mapping[str, int] | None = None,
    ) -> None:
        self._nodes = list(dict.fromkeys(nodes))
        self._index = {n: i for i, n in enumerate(self._nodes)}
        self._priorities = priorities or {}
        # node -> filtered deps within graph
        self._deps: dict[str, set[str]] = {}
        for node in self._nodes:
            deps = set(dependencies.get(node, []))
            self._deps[node] = {d for d in deps if d in self._index}
        self._dependents: dict[str, set[str]] = {n: set() for n in self._nodes}
        for node, deps in self._deps.items():
            for dep in deps:
                self._dependents[dep].add(node)

    def _key(self, node: str) -> tuple[int, int]:
        return (self._priorities.get(node, 0), self._index[node])

    def dependencies(self, node: str) -> set[str]:
        return set(self._deps[node])

    def dependents(self, node: str) -> set[str]:
        return set(self._dependents[node])

    def descendants(self, node: str) -> set[str]:
        """All nodes that transitively depend on *node*."""
        seen: set[str] = set()
        stack = list(self._dependents[node])
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._dependents[current])
        return seen

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        # Every remaining node still has an unresolved dependency inside
        # `remaining`, so following those edges must revisit a node.
        start = min(remaining, key=self._key)
        path: list[str] = []
        position: dict[str, int] = {}
        node = start
        while node not in position:
            position[node] = len(path)
            path.append(node)
            node = min((d for d in self._deps[node] if d in remaining), key=self._key)
        return path[position[node] :]

    def topological_order(self) -> list[str]:
        """Return deterministic topo order (priority, then input order tie-break)."""
        indegree: dict[str, int] = {n: len(deps) for n, deps in self._deps.items()}

        ready: list[tuple[tuple[int, int], str]] = [
            (self._key(n), n) for n, deg in indegree.items() if deg == 0
        ]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for child in self._dependents[node]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._key(child), child))

        if len(order) != len(self._nodes):
            raise DependencyCycleError(self._find_cycle(set(self._nodes) - set(order)))

        return order

    def reverse_topological_order(self) -> list[str]:
        order = self.topological_order()
        order.reverse()
        return order


@dataclass
class ResourceGraph:
    """Declarations resolved into a DAG keyed by symbolic name."""

    resources: dict[str, Resource]
    dependencies: dict[str, list[str]]
    order: list[str]
    children: dict[str, list[str]] = field(default_factory=dict)
    _graph: DependencyGraph | None = field(default=None, repr=False)

    def is_existing(self, address: str) -> bool:
        return self.resources[address].existing

    def descendants(self, address: str) -> set[str]:
        assert self._graph is not None
        return self._graph.descendants(address)

    def to_dot(self) -> str:
        """Render the graph in Graphviz DOT format (edges point at dependencies)."""
        lines = ["digraph resources {", "  rankdir=LR;"]
        for addr in self.order:
            shape = "box, style=dashed" if self.is_existing(addr) else "box"
            lines.append(f'  "{addr}" [shape={shape}];')
        for addr in self.order:
            lines.extend(f'  "{addr}" -> "{dep}";' for dep in self.dependencies[addr])
        lines.append("}")
        return "\n".join(lines)


def _resource_dependencies(resource: Resource, known: Mapping[str, Resource]) -> list[str]:
    """Explicit ``depends_on`` + ``Ref`` fields + ``${…}`` expressions, validated."""
    deps: dict[str, None] = {}
    for dep in resource.depends_on:
        if dep not in known:
            raise UnknownReferenceError(resource.address, dep)
        deps.setdefault(dep, None)

    for ref in resource.references():
        target = known.get(ref.name)
        if target is None:
            raise UnknownReferenceError(resource.address, ref.name)
        if ref.arm_type is not None and target.arm_type.lower() != ref.arm_type.lower():
            raise ValidationError(
                [
                    f"Resource '{resource.address}' field '{ref.field}' must reference a "
                    f"{ref.arm_type}, got '{ref.name}' ({target.arm_type})"
                ]
            )
        deps.setdefault(ref.name, None)

    try:
        names = resource.expression_references()
    except ExpressionError as exc:
        raise ValidationError([f"Resource '{resource.address}': {exc}"]) from exc
    for name in names:
        if name not in known:
            raise UnknownReferenceError(resource.address, name)
        deps.setdefault(name, None)

    if resource.address in deps:
        raise DependencyCycleError([resource.address])
    return list(deps)


def build_graph(resources: Sequence[Resource]) -> ResourceGraph:
    """Build the dependency graph for an ordered collection of declarations.

    Raises:
        DuplicateAddressError: Two declarations share a symbolic name.
        UnknownReferenceError: A declaration references an undeclared name.
        DependencyCycleError: The references form a cycle.
        ValidationError: An ``existing`` declaration is not a leaf, or a
            reference points at a resource of the wrong type.
    """
    by_addr: dict[str, Resource] = {}
    for r in resources:
        if r.address in by_addr:
            raise DuplicateAddressError(r.address)
        by_addr[r.address] = r

    dependencies: dict[str, list[str]] = {}
    children: dict[str, list[str]] = {addr: [] for addr in by_addr}
    errors: list[str] = []
    for addr, r in by_addr.items():
        deps = _resource_dependencies(r, by_addr)
        if r.existing and deps:
            errors.append(
                f"Existing resource '{addr}' is a lookup and cannot reference "
                f"other declarations ({', '.join(deps)})"
            )
        dependencies[addr] = deps
        parent = r.parent_address
        if parent is not None:
            children[parent].append(addr)
    if errors:
        raise ValidationError(errors)

    priorities = {addr: r.plan_priority for addr, r in by_addr.items()}
    graph = DependencyGraph(by_addr, dependencies, priorities=priorities)
    return ResourceGraph(
        resources=by_addr,
        dependencies=dependencies,
        order=graph.topological_order(),
        children=children,
        _graph=graph,
    )
