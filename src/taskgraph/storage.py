"""Document IO, atomic replace and config for taskgraph."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Callable

import yaml

from .models import (
    DEFAULT_PRIORITY,
    DEFAULT_SETTINGS,
    VALID_PRIORITIES,
    VALID_STATUSES,
    Address,
    Document,
    Settings,
    Subtask,
    SubtaskAddress,
    Task,
    TaskAddress,
    TaskStoreError,
    TaskValidationError,
    parse_address,
)

logger = logging.getLogger(__name__)

TASKS_DIR_NAME = "tasks"
TASKS_FILE_NAME = "tasks.json"
CONFIG_FILE_NAME = "config.yaml"
INIT_HINT = "run 'taskgraph init' to create a fresh tasks file"

TASK_KEYS = (
    "id",
    "title",
    "description",
    "details",
    "testStrategy",
    "status",
    "priority",
    "dependencies",
    "subtasks",
)
SUBTASK_KEYS = ("id", "title", "description", "details", "status", "priority", "dependencies")
SETTINGS_KEYS = {
    "indent": int,
    "sibling_ref_limit": int,
    "check_cycles": bool,
    "validate_after_move": bool,
}


def find_tasks_file(start: Path) -> Path | None:
    start = start.resolve()
    for candidate in [start, *start.parents]:
        path = candidate / TASKS_DIR_NAME / TASKS_FILE_NAME
        if path.is_file():
            return path
    return None


def default_tasks_file(start: Path) -> Path:
    return start.resolve() / TASKS_DIR_NAME / TASKS_FILE_NAME


def config_path(tasks_file: Path) -> Path:
    return tasks_file.parent / CONFIG_FILE_NAME


def default_config(settings: Settings = DEFAULT_SETTINGS) -> dict[str, Any]:
    return {"settings": {key: getattr(settings, key) for key in SETTINGS_KEYS}}


def write_default_config_if_missing(tasks_file: Path) -> bool:
    path = config_path(tasks_file)
    if path.exists():
        return False
    payload = yaml.safe_dump(default_config(), sort_keys=False, default_flow_style=False)
    path.write_text(payload, encoding="utf-8")
    return True


def read_config(tasks_file: Path, warn: Callable[[str], None] | None = None) -> dict[str, Any]:
    path = config_path(tasks_file)
    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        if warn is not None:
            warn(f"Unable to parse config at {path}. Falling back to defaults.")
        return {}
    if not isinstance(payload, dict):
        if warn is not None:
            warn(f"Invalid config format at {path}. Falling back to defaults.")
        return {}
    return payload


def resolve_settings(tasks_file: Path, warn: Callable[[str], None] | None = None) -> Settings:
    path = config_path(tasks_file)
    data = read_config(tasks_file, warn=warn)
    for key in data.keys():
        if key != "settings" and warn is not None:
            warn(f"Unsupported config key '{key}' in {path}. Ignoring.")

    section = data.get("settings", {})
    if not isinstance(section, dict):
        if warn is not None:
            warn(f"Invalid settings section in {path}. Using defaults.")
        return DEFAULT_SETTINGS

    values: dict[str, Any] = {}
    for key, value in section.items():
        expected = SETTINGS_KEYS.get(key)
        if expected is None:
            if warn is not None:
                warn(f"Unsupported settings key '{key}' in {path}. Ignoring.")
            continue
        # bool is an int subclass; an integer setting must not accept true/false.
        valid = isinstance(value, expected) and not (expected is int and isinstance(value, bool))
        if valid and expected is int and value < 1:
            valid = False
        if not valid:
            if warn is not None:
                warn(
                    f"Invalid settings.{key} in {path}. "
                    f"Using default '{getattr(DEFAULT_SETTINGS, key)}'."
                )
            continue
        values[key] = value
    return Settings(**values)


def init_layout(tasks_file: Path) -> tuple[bool, bool]:
    """Create an empty tasks file and default config; never overwrite."""
    tasks_file.parent.mkdir(parents=True, exist_ok=True)
    created_tasks = False
    if not tasks_file.exists():
        save_document(tasks_file, Document())
        created_tasks = True
    created_config = write_default_config_if_missing(tasks_file)
    return created_tasks, created_config


def parse_dependency(raw: Any, owner: Address, settings: Settings = DEFAULT_SETTINGS) -> Address:
    """Resolve one stored dependency entry relative to the node that owns it."""
    if isinstance(owner, SubtaskAddress):
        if isinstance(raw, int) and not isinstance(raw, bool) and 0 < raw < settings.sibling_ref_limit:
            return SubtaskAddress(owner.parent_id, raw)
    return parse_address(raw)


def dump_dependency(dep: Address, owner: Address, settings: Settings = DEFAULT_SETTINGS) -> int | str:
    if isinstance(owner, SubtaskAddress):
        if isinstance(dep, SubtaskAddress):
            if dep.parent_id == owner.parent_id and dep.local_id < settings.sibling_ref_limit:
                return dep.local_id
            return str(dep)
        # Quoted task ids extend the stored forms; a bare number here reads as a sibling.
        if dep.task_id < settings.sibling_ref_limit:
            return str(dep)
        return dep.task_id
    if isinstance(dep, SubtaskAddress):
        return str(dep)
    return dep.task_id


def _text(data: dict[str, Any], key: str, where: str) -> str:
    value = data.get(key, "")
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TaskStoreError(f"Field '{key}' of {where} must be a string")
    return value


def _positive_id(data: dict[str, Any], where: str) -> int:
    value = data.get("id")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value)
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise TaskStoreError(f"{where} has an invalid id: {data.get('id')!r}")
    return value


def _status(data: dict[str, Any], where: str) -> str:
    status = data.get("status") or "pending"
    if status not in VALID_STATUSES:
        raise TaskStoreError(f"Invalid status '{status}' for {where}")
    return status


def _priority(data: dict[str, Any], where: str, default: str | None) -> str | None:
    priority = data.get("priority") or default
    if priority is not None and priority not in VALID_PRIORITIES:
        raise TaskStoreError(f"Invalid priority '{priority}' for {where}")
    return priority


def _dependencies(raw: Any, owner: Address, settings: Settings) -> list[Address]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise TaskStoreError(f"Dependencies of {owner} must be a list")
    deps: list[Address] = []
    for item in raw:
        try:
            deps.append(parse_dependency(item, owner, settings))
        except TaskValidationError as exc:
            raise TaskStoreError(f"Invalid dependency of {owner}: {exc}") from exc
    return deps


def _subtask_from_dict(data: Any, parent_id: int, settings: Settings) -> Subtask:
    if not isinstance(data, dict):
        raise TaskStoreError(f"Subtask entries of task {parent_id} must be objects")
    local_id = _positive_id(data, f"A subtask of task {parent_id}")
    address = SubtaskAddress(parent_id, local_id)
    where = f"subtask {address}"
    return Subtask(
        id=local_id,
        title=_text(data, "title", where),
        description=_text(data, "description", where),
        details=_text(data, "details", where),
        status=_status(data, where),
        priority=_priority(data, where, None),
        dependencies=_dependencies(data.get("dependencies"), address, settings),
        extra={key: value for key, value in data.items() if key not in SUBTASK_KEYS},
    )


def _task_from_dict(data: Any, settings: Settings) -> Task:
    if not isinstance(data, dict):
        raise TaskStoreError("Task entries must be objects")
    task_id = _positive_id(data, "A task")
    where = f"task {task_id}"
    raw_subtasks = data.get("subtasks") or []
    if not isinstance(raw_subtasks, list):
        raise TaskStoreError(f"Subtasks of {where} must be a list")
    subtasks: list[Subtask] = []
    seen_local: set[int] = set()
    for raw in raw_subtasks:
        subtask = _subtask_from_dict(raw, task_id, settings)
        if subtask.id in seen_local:
            raise TaskStoreError(f"Duplicate subtask id {task_id}.{subtask.id}")
        seen_local.add(subtask.id)
        subtasks.append(subtask)
    return Task(
        id=task_id,
        title=_text(data, "title", where),
        description=_text(data, "description", where),
        details=_text(data, "details", where),
        test_strategy=_text(data, "testStrategy", where),
        status=_status(data, where),
        priority=_priority(data, where, DEFAULT_PRIORITY) or DEFAULT_PRIORITY,
        dependencies=_dependencies(data.get("dependencies"), TaskAddress(task_id), settings),
        subtasks=subtasks,
        extra={key: value for key, value in data.items() if key not in TASK_KEYS},
    )


def document_from_dict(payload: Any, settings: Settings = DEFAULT_SETTINGS) -> Document:
    if not isinstance(payload, dict) or not isinstance(payload.get("tasks"), list):
        raise TaskStoreError("Tasks document must be an object with a 'tasks' list", hint=INIT_HINT)
    tasks: list[Task] = []
    seen: set[int] = set()
    for raw in payload["tasks"]:
        task = _task_from_dict(raw, settings)
        if task.id in seen:
            raise TaskStoreError(f"Duplicate task id {task.id}")
        seen.add(task.id)
        tasks.append(task)
    extra = {key: value for key, value in payload.items() if key != "tasks"}
    return Document(tasks=tasks, extra=extra)


def subtask_to_dict(subtask: Subtask, parent_id: int, settings: Settings = DEFAULT_SETTINGS) -> dict[str, Any]:
    address = SubtaskAddress(parent_id, subtask.id)
    data: dict[str, Any] = {
        "id": subtask.id,
        "title": subtask.title,
        "description": subtask.description,
        "details": subtask.details,
        "status": subtask.status,
        "dependencies": [dump_dependency(dep, address, settings) for dep in subtask.dependencies],
    }
    if subtask.priority is not None:
        data["priority"] = subtask.priority
    data.update(subtask.extra)
    return data


def task_to_dict(task: Task, settings: Settings = DEFAULT_SETTINGS) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "details": task.details,
        "testStrategy": task.test_strategy,
        "status": task.status,
        "priority": task.priority,
        "dependencies": [dump_dependency(dep, task.address, settings) for dep in task.dependencies],
        "subtasks": [subtask_to_dict(subtask, task.id, settings) for subtask in task.subtasks],
    }
    data.update(task.extra)
    return data


def document_to_dict(document: Document, settings: Settings = DEFAULT_SETTINGS) -> dict[str, Any]:
    payload: dict[str, Any] = {"tasks": [task_to_dict(task, settings) for task in document.tasks]}
    payload.update(document.extra)
    return payload


def load_document(path: Path, settings: Settings = DEFAULT_SETTINGS) -> Document:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise TaskStoreError(f"Tasks file not found: {path}", hint=INIT_HINT) from exc
    except UnicodeDecodeError as exc:
        raise TaskStoreError(f"Tasks file {path} is not valid UTF-8: {exc}", hint=INIT_HINT) from exc
    except OSError as exc:
        raise TaskStoreError(f"Unable to read tasks file {path}: {exc}") from exc
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TaskStoreError(f"Tasks file {path} is not valid JSON: {exc}", hint=INIT_HINT) from exc
    document = document_from_dict(payload, settings)
    logger.debug("Loaded %d tasks from %s", len(document.tasks), path)
    return document


def try_load_document(path: Path, settings: Settings = DEFAULT_SETTINGS) -> Document | None:
    """Load for polling views: a vanished or half-written file means no data."""
    try:
        return load_document(path, settings)
    except TaskStoreError as exc:
        logger.debug("No data from %s: %s", path, exc)
        return None


def save_document(path: Path, document: Document, settings: Settings = DEFAULT_SETTINGS) -> None:
    text = json.dumps(document_to_dict(document, settings), indent=settings.indent, ensure_ascii=False) + "\n"
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise TaskStoreError(f"Unable to write tasks file {path}: {exc}") from exc
    logger.debug("Saved %d tasks to %s", len(document.tasks), path)
