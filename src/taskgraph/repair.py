"""Deterministic repair of dependency graph problems."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
import logging

from .graph import Problem, ProblemKind, count_edges, cycles_only, validate
from .models import DEFAULT_SETTINGS, Address, CycleError, Settings, Task, index_nodes

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RemovedDependency:
    address: Address
    dependency: Address
    reason: ProblemKind

    def to_dict(self) -> dict[str, str]:
        return {
            "address": str(self.address),
            "dependency": str(self.dependency),
            "reason": self.reason.value,
        }


@dataclass(slots=True)
class RepairResult:
    tasks: list[Task]
    changes: dict[Address, int] = field(default_factory=dict)
    removed: list[RemovedDependency] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.removed)

    @property
    def changed(self) -> bool:
        return bool(self.removed)


def _record(result: RepairResult, address: Address, dep: Address, reason: ProblemKind) -> None:
    result.removed.append(RemovedDependency(address, dep, reason))
    result.changes[address] = result.changes.get(address, 0) + 1


def _drop_scan_problems(result: RepairResult, problems: list[Problem]) -> None:
    nodes = index_nodes(result.tasks)
    flagged: dict[ProblemKind, set[tuple[Address, Address]]] = {
        kind: set() for kind in ProblemKind
    }
    for problem in problems:
        flagged[problem.kind].add((problem.address, problem.dependency))

    # Self edges go first, then duplicates, then missing references, so each
    # removed entry is logged under the first rule that applies to it.
    for reason in (
        ProblemKind.SELF_DEPENDENCY,
        ProblemKind.DUPLICATE_DEPENDENCY,
        ProblemKind.MISSING_REFERENCE,
    ):
        edges = flagged[reason]
        if not edges:
            continue
        for address, entity in nodes.items():
            kept: list[Address] = []
            for dep in entity.dependencies:
                if (address, dep) not in edges:
                    kept.append(dep)
                elif reason is ProblemKind.DUPLICATE_DEPENDENCY and dep not in kept:
                    kept.append(dep)
                else:
                    _record(result, address, dep, reason)
            entity.dependencies = kept


def _drop_edge(result: RepairResult, address: Address, dep: Address) -> None:
    entity = index_nodes(result.tasks)[address]
    entity.dependencies = [item for item in entity.dependencies if item != dep]
    _record(result, address, dep, ProblemKind.CIRCULAR_DEPENDENCY)


def repair(
    tasks: list[Task],
    problems: list[Problem] | None = None,
    settings: Settings = DEFAULT_SETTINGS,
) -> RepairResult:
    """Return a repaired copy of ``tasks`` and a log of every removed edge.

    Cycles are broken one at a time: the back edge of the first reported
    cycle is removed and the graph is validated again, so overlapping cycles
    that share that edge disappear together.
    """
    result = RepairResult(tasks=copy.deepcopy(tasks))
    if problems is None:
        problems = validate(tasks, settings)
    _drop_scan_problems(result, problems)

    if not settings.check_cycles:
        return result

    bound = count_edges(tasks)
    passes = 0
    while True:
        cycles = cycles_only(validate(result.tasks, settings))
        if not cycles:
            break
        passes += 1
        if passes > bound:
            raise CycleError(
                f"Dependency repair did not converge after {bound} passes; "
                f"remaining cycle: {cycles[0].describe()}"
            )
        first = cycles[0]
        logger.debug("Breaking cycle %s at %s -> %s", first.cycle, first.address, first.dependency)
        _drop_edge(result, first.address, first.dependency)

    if result.changed:
        logger.info("Repair removed %d dependencies across %d nodes", result.total, len(result.changes))
    return result
