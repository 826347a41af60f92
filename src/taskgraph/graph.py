"""Dependency graph construction and structural validation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import DEFAULT_SETTINGS, Address, Settings, Task, iter_nodes


class ProblemKind(str, Enum):
    SELF_DEPENDENCY = "self_dependency"
    MISSING_REFERENCE = "missing_reference"
    DUPLICATE_DEPENDENCY = "duplicate_dependency"
    CIRCULAR_DEPENDENCY = "circular_dependency"


@dataclass(frozen=True, slots=True)
class Problem:
    """One structural problem found in the dependency graph.

    ``address`` is the node that declares the offending edge and
    ``dependency`` is the edge target. For cycles the edge is the back edge
    found by the traversal and ``cycle`` holds the stack slice from the
    ancestor to the current node.
    """

    kind: ProblemKind
    address: Address
    dependency: Address
    cycle: tuple[Address, ...] = ()

    def describe(self) -> str:
        if self.kind is ProblemKind.SELF_DEPENDENCY:
            return f"{self.address} depends on itself"
        if self.kind is ProblemKind.MISSING_REFERENCE:
            return f"{self.address} depends on missing {self.dependency}"
        if self.kind is ProblemKind.DUPLICATE_DEPENDENCY:
            return f"{self.address} lists {self.dependency} more than once"
        path = " -> ".join(str(node) for node in (*self.cycle, self.cycle[0]))
        return f"Dependency cycle: {path}"

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "address": str(self.address),
            "dependency": str(self.dependency),
            "cycle": [str(node) for node in self.cycle],
        }


def build_graph(tasks: list[Task]) -> dict[Address, list[Address]]:
    """Map every node to its distinct, resolvable, non-self dependencies."""
    nodes = [address for address, _, _ in iter_nodes(tasks)]
    known = set(nodes)
    graph: dict[Address, list[Address]] = {}
    for address, entity, _ in iter_nodes(tasks):
        edges: list[Address] = []
        for dep in entity.dependencies:
            if dep == address or dep not in known or dep in edges:
                continue
            edges.append(dep)
        graph[address] = edges
    return graph


def count_edges(tasks: list[Task]) -> int:
    return sum(len(entity.dependencies) for _, entity, _ in iter_nodes(tasks))


def find_cycles(graph: dict[Address, list[Address]]) -> list[Problem]:
    unvisited, on_stack, finished = 0, 1, 2
    color = {node: unvisited for node in graph}
    problems: list[Problem] = []

    for root in graph:
        if color[root] != unvisited:
            continue
        color[root] = on_stack
        path = [root]
        stack = [(root, iter(graph[root]))]
        while stack:
            node, edges = stack[-1]
            for dep in edges:
                state = color[dep]
                if state == unvisited:
                    color[dep] = on_stack
                    path.append(dep)
                    stack.append((dep, iter(graph[dep])))
                    break
                if state == on_stack:
                    cycle = tuple(path[path.index(dep) :])
                    problems.append(
                        Problem(ProblemKind.CIRCULAR_DEPENDENCY, node, dep, cycle)
                    )
            else:
                color[node] = finished
                path.pop()
                stack.pop()
    return problems


def validate(tasks: list[Task], settings: Settings = DEFAULT_SETTINGS) -> list[Problem]:
    """Report structural problems in document order. Never mutates or raises."""
    known = {address for address, _, _ in iter_nodes(tasks)}
    problems: list[Problem] = []
    for address, entity, _ in iter_nodes(tasks):
        seen: set[Address] = set()
        for dep in entity.dependencies:
            if dep == address:
                problems.append(Problem(ProblemKind.SELF_DEPENDENCY, address, dep))
            elif dep in seen:
                problems.append(Problem(ProblemKind.DUPLICATE_DEPENDENCY, address, dep))
            elif dep not in known:
                problems.append(Problem(ProblemKind.MISSING_REFERENCE, address, dep))
            seen.add(dep)

    if settings.check_cycles:
        problems.extend(find_cycles(build_graph(tasks)))
    return problems


def cycles_only(problems: list[Problem]) -> list[Problem]:
    return [problem for problem in problems if problem.kind is ProblemKind.CIRCULAR_DEPENDENCY]


def would_create_cycle(tasks: list[Task], owner: Address, dependency: Address) -> bool:
    """Return True when adding ``owner -> dependency`` closes a cycle."""
    if owner == dependency:
        return True
    graph = build_graph(tasks)
    pending = [dependency]
    reached: set[Address] = set()
    while pending:
        node = pending.pop()
        if node == owner:
            return True
        if node in reached:
            continue
        reached.add(node)
        pending.extend(graph.get(node, []))
    return False
