"""Selection of the next eligible task or subtask to work on."""

from __future__ import annotations

from dataclasses import dataclass

from .models import (
    ACTIONABLE_STATUSES,
    DEFAULT_PRIORITY,
    DONE_STATUSES,
    Address,
    Entity,
    Task,
    address_sort_key,
    index_nodes,
    iter_nodes,
)

PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


@dataclass(frozen=True, slots=True)
class Candidate:
    address: Address
    entity: Entity
    parent: Task | None
    priority: str

    @property
    def is_subtask(self) -> bool:
        return self.parent is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "address": str(self.address),
            "title": self.entity.title,
            "status": self.entity.status,
            "priority": self.priority,
            "dependencies": [str(dep) for dep in self.entity.dependencies],
            "parent": self.parent.id if self.parent is not None else None,
        }


def effective_priority(entity: Entity, parent: Task | None) -> str:
    if entity.priority:
        return entity.priority
    if parent is not None:
        return parent.priority
    return DEFAULT_PRIORITY


def unmet_dependencies(entity: Entity, nodes: dict[Address, Entity]) -> list[Address]:
    """Dependencies that are missing or not done; deferred and cancelled count as unmet."""
    unmet: list[Address] = []
    for dep in entity.dependencies:
        target = nodes.get(dep)
        if target is None or target.status not in DONE_STATUSES:
            unmet.append(dep)
    return unmet


def _rank(candidate: Candidate) -> tuple[int, int, tuple[int, int]]:
    return (
        PRIORITY_RANK.get(candidate.priority, len(PRIORITY_RANK)),
        len(candidate.entity.dependencies),
        address_sort_key(candidate.address),
    )


def eligible_candidates(tasks: list[Task]) -> list[Candidate]:
    nodes = index_nodes(tasks)
    candidates: list[Candidate] = []
    for address, entity, parent in iter_nodes(tasks):
        if entity.status not in ACTIONABLE_STATUSES:
            continue
        if parent is not None and parent.status in DONE_STATUSES:
            continue
        if unmet_dependencies(entity, nodes):
            continue
        candidates.append(Candidate(address, entity, parent, effective_priority(entity, parent)))
    return candidates


def next_task(tasks: list[Task]) -> Candidate | None:
    """Pick the best eligible entity: priority, then fewest dependencies, then lowest address."""
    candidates = eligible_candidates(tasks)
    if not candidates:
        return None
    return min(candidates, key=_rank)
