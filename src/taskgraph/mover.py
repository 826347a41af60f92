"""Relocation of tasks and subtasks with document-wide reference rewriting."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Iterable

from .graph import Problem, cycles_only, validate
from .models import (
    DEFAULT_SETTINGS,
    Address,
    Entity,
    Settings,
    Subtask,
    SubtaskAddress,
    Task,
    TaskAddress,
    TaskConflictError,
    TaskError,
    TaskNotFoundError,
    TaskValidationError,
    find_task,
    iter_nodes,
    next_task_id,
    parse_address,
)

logger = logging.getLogger(__name__)

TEST_STRATEGY_KEY = "testStrategy"


@dataclass(slots=True)
class MovedEntity:
    source: Address
    destination: Address
    kind: str
    entity: Entity
    promoted: list[tuple[Address, Address]] = field(default_factory=list)
    rewritten: int = 0
    warnings: list[Problem] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "source": str(self.source),
            "destination": str(self.destination),
            "kind": self.kind,
            "title": self.entity.title,
            "promoted": [{"from": str(old), "to": str(new)} for old, new in self.promoted],
            "rewritten": self.rewritten,
            "warnings": [problem.describe() for problem in self.warnings],
        }


@dataclass(slots=True)
class MoveOutcome:
    source: Address | str | int
    destination: Address | str | int
    moved: MovedEntity | None = None
    error: TaskError | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, object]:
        return {
            "source": str(self.source),
            "destination": str(self.destination),
            "ok": self.ok,
            "skipped": self.skipped,
            "moved": self.moved.to_dict() if self.moved is not None else None,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass(slots=True)
class BatchResult:
    outcomes: list[MoveOutcome]
    warnings: list[Problem] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def moved_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.moved is not None)


def _rewrite_references(tasks: list[Task], mapping: dict[Address, Address]) -> int:
    """Apply ``mapping`` to every dependency entry at once; return the count."""
    if not mapping:
        return 0
    rewritten = 0
    for _, entity, _ in iter_nodes(tasks):
        updated: list[Address] = []
        for dep in entity.dependencies:
            target = mapping.get(dep)
            if target is None:
                updated.append(dep)
            else:
                updated.append(target)
                rewritten += 1
        entity.dependencies = updated
    return rewritten


def _insert_in_order(tasks: list[Task], task: Task) -> None:
    for index, existing in enumerate(tasks):
        if existing.id > task.id:
            tasks.insert(index, task)
            return
    tasks.append(task)


def _insert_subtask_in_order(parent: Task, subtask: Subtask) -> None:
    for index, existing in enumerate(parent.subtasks):
        if existing.id > subtask.id:
            parent.subtasks.insert(index, subtask)
            return
    parent.subtasks.append(subtask)


def _require_task(tasks: list[Task], task_id: int, role: str) -> Task:
    task = find_task(tasks, task_id)
    if task is None:
        raise TaskNotFoundError(f"{role} task {task_id} not found")
    return task


def _require_subtask(tasks: list[Task], address: SubtaskAddress) -> tuple[Task, Subtask]:
    parent = _require_task(tasks, address.parent_id, "Parent")
    subtask = parent.find_subtask(address.local_id)
    if subtask is None:
        raise TaskNotFoundError(f"Subtask {address} not found")
    return parent, subtask


def _task_to_task(tasks: list[Task], source: TaskAddress, destination: TaskAddress) -> MovedEntity:
    task = _require_task(tasks, source.task_id, "Source")
    if find_task(tasks, destination.task_id) is not None:
        raise TaskConflictError(f"Task {destination} already exists; refusing to overwrite it")

    mapping: dict[Address, Address] = {source: destination}
    for subtask in task.subtasks:
        mapping[SubtaskAddress(source.task_id, subtask.id)] = SubtaskAddress(destination.task_id, subtask.id)

    tasks.remove(task)
    task.id = destination.task_id
    _insert_in_order(tasks, task)
    rewritten = _rewrite_references(tasks, mapping)
    return MovedEntity(source, destination, "task", task, rewritten=rewritten)


def _task_to_subtask(tasks: list[Task], source: TaskAddress, destination: SubtaskAddress) -> MovedEntity:
    task = _require_task(tasks, source.task_id, "Source")
    if destination.parent_id == source.task_id:
        raise TaskValidationError(f"Task {source} cannot become a subtask of itself")
    parent = _require_task(tasks, destination.parent_id, "Destination parent")

    local_id = destination.local_id
    if parent.find_subtask(local_id) is not None:
        local_id = parent.next_subtask_id()
    new_address = SubtaskAddress(parent.id, local_id)

    extra = dict(task.extra)
    if task.test_strategy:
        extra[TEST_STRATEGY_KEY] = task.test_strategy
    converted = Subtask(
        id=local_id,
        title=task.title,
        description=task.description,
        details=task.details,
        status=task.status,
        dependencies=list(task.dependencies),
        priority=None if task.priority == parent.priority else task.priority,
        extra=extra,
    )

    mapping: dict[Address, Address] = {source: new_address}
    promoted: list[tuple[Address, Address]] = []
    next_id = next_task_id(tasks)
    tasks.remove(task)
    for orphan in task.subtasks:
        old_address = SubtaskAddress(source.task_id, orphan.id)
        new_task_address = TaskAddress(next_id)
        inherited = [
            dep
            for dep in task.dependencies
            if dep != old_address and dep not in orphan.dependencies
        ]
        orphan_extra = dict(orphan.extra)
        test_strategy = orphan_extra.pop(TEST_STRATEGY_KEY, "")
        tasks.append(
            Task(
                id=next_id,
                title=orphan.title,
                description=orphan.description,
                details=orphan.details,
                test_strategy=test_strategy,
                status=orphan.status,
                priority=orphan.priority or task.priority,
                dependencies=[*orphan.dependencies, *inherited],
                extra=orphan_extra,
            )
        )
        mapping[old_address] = new_task_address
        promoted.append((old_address, new_task_address))
        next_id += 1

    _insert_subtask_in_order(parent, converted)
    rewritten = _rewrite_references(tasks, mapping)
    if promoted:
        logger.info("Promoted %d subtasks of task %s to top-level tasks", len(promoted), source)
    return MovedEntity(source, new_address, "subtask", converted, promoted=promoted, rewritten=rewritten)


def _subtask_to_task(tasks: list[Task], source: SubtaskAddress, destination: TaskAddress) -> MovedEntity:
    parent, subtask = _require_subtask(tasks, source)
    task_id = destination.task_id
    if find_task(tasks, task_id) is not None:
        task_id = next_task_id(tasks)
    new_address = TaskAddress(task_id)

    extra = dict(subtask.extra)
    test_strategy = extra.pop(TEST_STRATEGY_KEY, "")
    converted = Task(
        id=task_id,
        title=subtask.title,
        description=subtask.description,
        details=subtask.details,
        test_strategy=test_strategy,
        status=subtask.status,
        priority=subtask.priority or parent.priority,
        dependencies=list(subtask.dependencies),
        extra=extra,
    )
    parent.subtasks.remove(subtask)
    _insert_in_order(tasks, converted)
    rewritten = _rewrite_references(tasks, {source: new_address})
    return MovedEntity(source, new_address, "task", converted, rewritten=rewritten)


def _reorder_siblings(parent: Task, subtask: Subtask, destination: SubtaskAddress) -> dict[Address, Address]:
    # The parent keeps its set of local ids; they are handed out again by
    # position after the moved subtask is reinserted at the destination slot.
    slots = sorted(sibling.id for sibling in parent.subtasks)
    ordered = sorted(parent.subtasks, key=lambda sibling: sibling.id)
    ordered.remove(subtask)
    ordered.insert(slots.index(destination.local_id), subtask)

    mapping: dict[Address, Address] = {}
    for local_id, sibling in zip(slots, ordered):
        if sibling.id != local_id:
            mapping[SubtaskAddress(parent.id, sibling.id)] = SubtaskAddress(parent.id, local_id)
        sibling.id = local_id
    parent.subtasks = ordered
    return mapping


def _subtask_to_subtask(tasks: list[Task], source: SubtaskAddress, destination: SubtaskAddress) -> MovedEntity:
    source_parent, subtask = _require_subtask(tasks, source)
    target_parent = _require_task(tasks, destination.parent_id, "Destination parent")

    if target_parent is source_parent and target_parent.find_subtask(destination.local_id) is not None:
        mapping = _reorder_siblings(source_parent, subtask, destination)
        rewritten = _rewrite_references(tasks, mapping)
        return MovedEntity(source, destination, "subtask", subtask, rewritten=rewritten)

    local_id = destination.local_id
    if target_parent.find_subtask(local_id) is not None:
        local_id = target_parent.next_subtask_id()
    new_address = SubtaskAddress(target_parent.id, local_id)

    source_parent.subtasks.remove(subtask)
    subtask.id = local_id
    _insert_subtask_in_order(target_parent, subtask)
    rewritten = _rewrite_references(tasks, {source: new_address})
    return MovedEntity(source, new_address, "subtask", subtask, rewritten=rewritten)


def _apply(tasks: list[Task], source: Address, destination: Address) -> MovedEntity:
    if source == destination:
        raise TaskValidationError(f"Source and destination are the same: {source}")
    if isinstance(source, TaskAddress):
        if isinstance(destination, TaskAddress):
            return _task_to_task(tasks, source, destination)
        return _task_to_subtask(tasks, source, destination)
    if isinstance(destination, TaskAddress):
        return _subtask_to_task(tasks, source, destination)
    return _subtask_to_subtask(tasks, source, destination)


def move(
    tasks: list[Task],
    source: Address | str | int,
    destination: Address | str | int,
    settings: Settings = DEFAULT_SETTINGS,
) -> MovedEntity:
    """Move the entity at ``source`` to ``destination`` inside ``tasks``.

    The list is modified in place, and only after every check has passed,
    so a raised error leaves it untouched.
    """
    source = parse_address(source)
    destination = parse_address(destination)
    moved = _apply(tasks, source, destination)
    logger.info("Moved %s to %s (%d references rewritten)", source, moved.destination, moved.rewritten)
    if settings.validate_after_move:
        moved.warnings = cycles_only(validate(tasks, settings))
    return moved


def _batch_order(tasks: list[Task], pairs: list[tuple[Address, Address]]) -> list[int]:
    occupied = {address for address, _, _ in iter_nodes(tasks)}
    order: list[int] = []
    scheduled: set[int] = set()

    def schedule(index: int, active: set[int]) -> None:
        if index in scheduled or index in active:
            return
        active.add(index)
        destination = pairs[index][1]
        if destination in occupied:
            for later in range(index + 1, len(pairs)):
                if pairs[later][0] == destination:
                    schedule(later, active)
                    break
        active.discard(index)
        scheduled.add(index)
        order.append(index)

    for index in range(len(pairs)):
        schedule(index, set())
    return order


def move_batch(
    tasks: list[Task],
    pairs: Iterable[tuple[Address | str | int, Address | str | int]],
    settings: Settings = DEFAULT_SETTINGS,
) -> BatchResult:
    """Apply moves in input order, vacating occupied destinations first.

    A pair whose destination is occupied by the source of a later pair runs
    after that later pair. Each failure is recorded and the batch goes on;
    pairs naming the same address twice are skipped.
    """
    outcomes: list[MoveOutcome | None] = []
    runnable: list[tuple[Address, Address]] = []
    positions: list[int] = []
    for raw_source, raw_destination in pairs:
        try:
            source = parse_address(raw_source)
            destination = parse_address(raw_destination)
        except TaskValidationError as exc:
            logger.warning("Move %s -> %s failed: %s", raw_source, raw_destination, exc)
            outcomes.append(MoveOutcome(raw_source, raw_destination, error=exc))
            continue
        if source == destination:
            logger.info("Skipping %s -> %s (same id)", source, destination)
            outcomes.append(MoveOutcome(source, destination, skipped=True))
            continue
        positions.append(len(outcomes))
        runnable.append((source, destination))
        outcomes.append(None)

    for order in _batch_order(tasks, runnable):
        source, destination = runnable[order]
        index = positions[order]
        try:
            moved = _apply(tasks, source, destination)
        except TaskError as exc:
            logger.warning("Move %s -> %s failed: %s", source, destination, exc)
            outcomes[index] = MoveOutcome(source, destination, error=exc)
            continue
        logger.info("Moved %s to %s", source, moved.destination)
        outcomes[index] = MoveOutcome(source, destination, moved=moved)

    result = BatchResult(outcomes=[outcome for outcome in outcomes if outcome is not None])
    if settings.validate_after_move:
        result.warnings = cycles_only(validate(tasks, settings))
    return result
