"""Path-based operations that load, transform and persist the tasks document."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Iterable

from . import storage
from .graph import Problem, validate as validate_tasks, would_create_cycle
from .models import (
    DEFAULT_SETTINGS,
    Address,
    Document,
    Settings,
    TaskNotFoundError,
    TaskValidationError,
    index_nodes,
    parse_address,
)
from .mover import BatchResult, MovedEntity, move as move_entity, move_batch as move_entities
from .repair import RepairResult, repair as repair_tasks
from .selector import Candidate, next_task as select_next

logger = logging.getLogger(__name__)

AddressLike = Address | str | int


class TaskService:
    def __init__(self, tasks_file: Path, settings: Settings | None = None) -> None:
        self.tasks_file = tasks_file.resolve()
        self.settings = settings or DEFAULT_SETTINGS

    @classmethod
    def from_config(
        cls,
        tasks_file: Path,
        warn: Callable[[str], None] | None = None,
    ) -> TaskService:
        return cls(tasks_file, storage.resolve_settings(tasks_file, warn=warn))

    def load(self) -> Document:
        return storage.load_document(self.tasks_file, self.settings)

    def poll(self) -> Document | None:
        return storage.try_load_document(self.tasks_file, self.settings)

    def _save(self, document: Document) -> None:
        storage.save_document(self.tasks_file, document, self.settings)

    def validate(self) -> list[Problem]:
        return validate_tasks(self.load().tasks, self.settings)

    def repair(self, *, write: bool = True) -> RepairResult:
        document = self.load()
        result = repair_tasks(document.tasks, settings=self.settings)
        if write and result.changed:
            document.tasks = result.tasks
            self._save(document)
        return result

    def move(self, source: AddressLike, destination: AddressLike) -> MovedEntity:
        document = self.load()
        moved = move_entity(document.tasks, source, destination, self.settings)
        self._save(document)
        for warning in moved.warnings:
            logger.warning("After move: %s", warning.describe())
        return moved

    def move_batch(self, pairs: Iterable[tuple[AddressLike, AddressLike]]) -> BatchResult:
        document = self.load()
        result = move_entities(document.tasks, pairs, self.settings)
        if result.moved_count:
            self._save(document)
        for warning in result.warnings:
            logger.warning("After batch move: %s", warning.describe())
        return result

    def next_task(self) -> Candidate | None:
        return select_next(self.load().tasks)

    def add_dependency(self, owner: AddressLike, dependency: AddressLike) -> bool:
        owner = parse_address(owner)
        dependency = parse_address(dependency)
        document = self.load()
        nodes = index_nodes(document.tasks)
        if owner not in nodes:
            raise TaskNotFoundError(f"Task or subtask {owner} not found")
        if dependency not in nodes:
            raise TaskNotFoundError(f"Dependency {dependency} not found")
        if owner == dependency:
            raise TaskValidationError(f"{owner} cannot depend on itself")

        entity = nodes[owner]
        if dependency in entity.dependencies:
            return False
        if would_create_cycle(document.tasks, owner, dependency):
            raise TaskValidationError(f"Adding {dependency} to {owner} would create a dependency cycle")
        entity.dependencies.append(dependency)
        self._save(document)
        logger.info("Added dependency %s -> %s", owner, dependency)
        return True

    def remove_dependency(self, owner: AddressLike, dependency: AddressLike) -> bool:
        owner = parse_address(owner)
        dependency = parse_address(dependency)
        document = self.load()
        entity = index_nodes(document.tasks).get(owner)
        if entity is None:
            raise TaskNotFoundError(f"Task or subtask {owner} not found")
        if dependency not in entity.dependencies:
            return False
        entity.dependencies = [dep for dep in entity.dependencies if dep != dependency]
        self._save(document)
        logger.info("Removed dependency %s -> %s", owner, dependency)
        return True


def validate(path: Path, settings: Settings | None = None) -> list[Problem]:
    return TaskService(path, settings).validate()


def repair(path: Path, settings: Settings | None = None) -> RepairResult:
    return TaskService(path, settings).repair()


def move(
    path: Path,
    source: AddressLike,
    destination: AddressLike,
    settings: Settings | None = None,
) -> MovedEntity:
    return TaskService(path, settings).move(source, destination)


def move_batch(
    path: Path,
    pairs: Iterable[tuple[AddressLike, AddressLike]],
    settings: Settings | None = None,
) -> BatchResult:
    return TaskService(path, settings).move_batch(pairs)


def next_task(path: Path, settings: Settings | None = None) -> Candidate | None:
    return TaskService(path, settings).next_task()
