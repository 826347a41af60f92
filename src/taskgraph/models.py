"""Core task models, addresses, settings and errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator
import re

VALID_STATUSES = (
    "pending",
    "in-progress",
    "done",
    "completed",
    "blocked",
    "deferred",
    "cancelled",
    "review",
)
VALID_PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"
DONE_STATUSES = ("done", "completed")
ACTIONABLE_STATUSES = ("pending", "in-progress")

ADDRESS_RE = re.compile(r"^\s*(\d+)(?:\.(\d+))?\s*$")


class TaskError(Exception):
    """Base error for task operations."""


class TaskValidationError(TaskError):
    """Raised when an argument or document value is invalid."""


class TaskNotFoundError(TaskError):
    """Raised when an address does not resolve to a task or subtask."""


class TaskConflictError(TaskError):
    """Raised when a destination address is already occupied."""


class CycleError(TaskError):
    """Raised when dependency repair fails to converge."""


class TaskStoreError(TaskError):
    """Raised when the tasks document is missing, unreadable or malformed."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint

    def __str__(self) -> str:
        message = super().__str__()
        if self.hint:
            return f"{message} ({self.hint})"
        return message


@dataclass(frozen=True, slots=True, order=True)
class TaskAddress:
    task_id: int

    @property
    def root_id(self) -> int:
        return self.task_id

    def __str__(self) -> str:
        return str(self.task_id)


@dataclass(frozen=True, slots=True, order=True)
class SubtaskAddress:
    parent_id: int
    local_id: int

    @property
    def root_id(self) -> int:
        return self.parent_id

    @property
    def parent(self) -> TaskAddress:
        return TaskAddress(self.parent_id)

    def __str__(self) -> str:
        return f"{self.parent_id}.{self.local_id}"


Address = TaskAddress | SubtaskAddress


def parse_address(raw: Any) -> Address:
    """Parse ``7``, ``"7"`` or ``"7.2"`` into a typed address."""
    if isinstance(raw, (TaskAddress, SubtaskAddress)):
        return raw
    if isinstance(raw, bool):
        raise TaskValidationError(f"Invalid address: {raw!r}")
    if isinstance(raw, int):
        if raw <= 0:
            raise TaskValidationError(f"Invalid address: {raw}")
        return TaskAddress(raw)
    if not isinstance(raw, str):
        raise TaskValidationError(f"Invalid address: {raw!r}")
    match = ADDRESS_RE.fullmatch(raw)
    if match is None:
        raise TaskValidationError(f"Invalid address: {raw!r}")
    major = int(match.group(1))
    if major <= 0:
        raise TaskValidationError(f"Invalid address: {raw!r}")
    if match.group(2) is None:
        return TaskAddress(major)
    minor = int(match.group(2))
    if minor <= 0:
        raise TaskValidationError(f"Invalid address: {raw!r}")
    return SubtaskAddress(major, minor)


def address_sort_key(address: Address) -> tuple[int, int]:
    if isinstance(address, SubtaskAddress):
        return (address.parent_id, address.local_id)
    return (address.task_id, 0)


@dataclass(frozen=True, slots=True)
class Settings:
    indent: int = 2
    sibling_ref_limit: int = 100
    check_cycles: bool = True
    validate_after_move: bool = True


DEFAULT_SETTINGS = Settings()


@dataclass(slots=True)
class Subtask:
    id: int
    title: str
    description: str = ""
    details: str = ""
    status: str = "pending"
    dependencies: list[Address] = field(default_factory=list)
    priority: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class Task:
    id: int
    title: str
    description: str = ""
    details: str = ""
    test_strategy: str = ""
    status: str = "pending"
    priority: str = DEFAULT_PRIORITY
    dependencies: list[Address] = field(default_factory=list)
    subtasks: list[Subtask] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def address(self) -> TaskAddress:
        return TaskAddress(self.id)

    def find_subtask(self, local_id: int) -> Subtask | None:
        for subtask in self.subtasks:
            if subtask.id == local_id:
                return subtask
        return None

    def next_subtask_id(self) -> int:
        return max((subtask.id for subtask in self.subtasks), default=0) + 1


@dataclass(slots=True)
class Document:
    tasks: list[Task] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


Entity = Task | Subtask


def iter_nodes(tasks: list[Task]) -> Iterator[tuple[Address, Entity, Task | None]]:
    """Yield ``(address, entity, parent)`` for every node in document order."""
    for task in tasks:
        yield task.address, task, None
        for subtask in task.subtasks:
            yield SubtaskAddress(task.id, subtask.id), subtask, task


def index_nodes(tasks: list[Task]) -> dict[Address, Entity]:
    return {address: entity for address, entity, _ in iter_nodes(tasks)}


def find_task(tasks: list[Task], task_id: int) -> Task | None:
    for task in tasks:
        if task.id == task_id:
            return task
    return None


def next_task_id(tasks: list[Task]) -> int:
    return max((task.id for task in tasks), default=0) + 1
