"""CLI entrypoint for taskgraph."""

from __future__ import annotations

import logging
from pathlib import Path
import sys
from typing import Annotated

import typer

from . import render, storage
from .logging_setup import setup_logging
from .models import TaskError, TaskStoreError, TaskValidationError, parse_address
from .mover import BatchResult, MoveOutcome
from .service import TaskService

FileOption = Annotated[
    Path | None,
    typer.Option("--file", "-f", help="Path to tasks.json (default: nearest tasks/tasks.json)"),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Emit machine-readable JSON")]

app = typer.Typer(
    help="Validate, repair and reorganize a tasks.json dependency graph",
    no_args_is_help=True,
)


def _can_render_rich_output() -> bool:
    return sys.stdout.isatty()


def _print_rich(renderable) -> None:
    from rich.console import Console

    Console().print(renderable)


def _warn_config(message: str) -> None:
    typer.echo(f"Warning: {message}", err=True)


def _resolve_tasks_file(tasks_file: Path | None) -> Path:
    if tasks_file is not None:
        return tasks_file.expanduser().resolve()
    found = storage.find_tasks_file(Path.cwd())
    if found is None:
        raise TaskStoreError(
            "No tasks/tasks.json found from current directory upward",
            hint=storage.INIT_HINT,
        )
    typer.echo(f"Using tasks file: {found}", err=True)
    return found


def _service(tasks_file: Path | None) -> TaskService:
    return TaskService.from_config(_resolve_tasks_file(tasks_file), warn=_warn_config)


def _run_and_handle(fn) -> None:
    try:
        fn()
    except TaskError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _split_ids(raw: str) -> list[str]:
    return [token.strip() for token in raw.split(",") if token.strip()]


def _emit(as_json: bool, json_text, rich_renderable, plain_text) -> None:
    if as_json:
        typer.echo(json_text())
    elif _can_render_rich_output():
        _print_rich(rich_renderable())
    else:
        typer.echo(plain_text())


@app.callback()
def root_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")] = False,
) -> None:
    """Dependency graph integrity and reorganization for tasks.json."""
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING)


@app.command("init")
def init_cmd(tasks_file: FileOption = None) -> None:
    """Create an empty tasks file and default config."""

    def _inner() -> None:
        target = tasks_file.expanduser().resolve() if tasks_file else storage.default_tasks_file(Path.cwd())
        created_tasks, created_config = storage.init_layout(target)
        typer.echo(f"{'Created' if created_tasks else 'Using existing'} tasks file: {target}")
        cfg_path = storage.config_path(target)
        typer.echo(f"{'Created' if created_config else 'Using existing'} config: {cfg_path}")

    _run_and_handle(_inner)


@app.command("validate-dependencies")
def validate_cmd(tasks_file: FileOption = None, as_json: JsonOption = False) -> None:
    """Identify invalid dependencies without fixing them."""

    def _inner() -> None:
        problems = _service(tasks_file).validate()
        _emit(
            as_json,
            lambda: render.render_problems_json(problems),
            lambda: render.render_problems_rich(problems),
            lambda: render.render_problems_plain(problems),
        )

    _run_and_handle(_inner)


@app.command("fix-dependencies")
def fix_cmd(
    tasks_file: FileOption = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Report changes without writing")] = False,
    as_json: JsonOption = False,
) -> None:
    """Fix invalid dependencies automatically."""

    def _inner() -> None:
        result = _service(tasks_file).repair(write=not dry_run)
        _emit(
            as_json,
            lambda: render.render_repair_json(result),
            lambda: render.render_repair_rich(result),
            lambda: render.render_repair_plain(result),
        )

    _run_and_handle(_inner)


@app.command("move")
def move_cmd(
    from_ids: Annotated[str, typer.Option("--from", help="Source id(s), e.g. 5, 5.2 or 5,6,7")],
    to_ids: Annotated[str, typer.Option("--to", help="Destination id(s), one per source")],
    tasks_file: FileOption = None,
    as_json: JsonOption = False,
) -> None:
    """Move a task or subtask to a new address."""

    def _inner() -> None:
        sources = _split_ids(from_ids)
        destinations = _split_ids(to_ids)
        if not sources or len(sources) != len(destinations):
            raise TaskValidationError("The number of source and destination ids must match")
        pairs = list(zip(sources, destinations))
        svc = _service(tasks_file)

        if len(pairs) == 1:
            moved = svc.move(*pairs[0])
            result = BatchResult(
                outcomes=[MoveOutcome(moved.source, parse_address(pairs[0][1]), moved=moved)],
                warnings=moved.warnings,
            )
        else:
            result = svc.move_batch(pairs)

        _emit(
            as_json,
            lambda: render.render_batch_json(result),
            lambda: render.render_batch_rich(result),
            lambda: render.render_batch_plain(result),
        )
        if not result.ok:
            raise typer.Exit(code=1)

    _run_and_handle(_inner)


@app.command("next")
def next_cmd(tasks_file: FileOption = None, as_json: JsonOption = False) -> None:
    """Show the next task to work on based on dependencies and status."""

    def _inner() -> None:
        candidate = _service(tasks_file).next_task()
        _emit(
            as_json,
            lambda: render.render_next_json(candidate),
            lambda: render.render_next_rich(candidate),
            lambda: render.render_next_plain(candidate),
        )

    _run_and_handle(_inner)


@app.command("add-dependency")
def add_dependency_cmd(
    task_id: Annotated[str, typer.Option("--id", "-i", help="Task or subtask that gains the dependency")],
    depends_on: Annotated[str, typer.Option("--depends-on", "-d", help="Task or subtask it depends on")],
    tasks_file: FileOption = None,
) -> None:
    """Add a dependency to a task or subtask."""

    def _inner() -> None:
        added = _service(tasks_file).add_dependency(task_id, depends_on)
        if added:
            typer.echo(f"Added dependency: {task_id} -> {depends_on}")
        else:
            typer.echo(f"{task_id} already depends on {depends_on}")

    _run_and_handle(_inner)


@app.command("remove-dependency")
def remove_dependency_cmd(
    task_id: Annotated[str, typer.Option("--id", "-i", help="Task or subtask to edit")],
    depends_on: Annotated[str, typer.Option("--depends-on", "-d", help="Dependency to remove")],
    tasks_file: FileOption = None,
) -> None:
    """Remove a dependency from a task or subtask."""

    def _inner() -> None:
        removed = _service(tasks_file).remove_dependency(task_id, depends_on)
        if removed:
            typer.echo(f"Removed dependency: {task_id} -> {depends_on}")
        else:
            typer.echo(f"{task_id} does not depend on {depends_on}")

    _run_and_handle(_inner)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
