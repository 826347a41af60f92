"""Renderers for validation, repair, move and next-task output."""

from __future__ import annotations

import json
from typing import Iterable

from .graph import Problem, ProblemKind
from .mover import BatchResult, MoveOutcome
from .repair import RepairResult
from .selector import Candidate


KIND_LABELS = {
    ProblemKind.SELF_DEPENDENCY: "self",
    ProblemKind.MISSING_REFERENCE: "missing",
    ProblemKind.DUPLICATE_DEPENDENCY: "duplicate",
    ProblemKind.CIRCULAR_DEPENDENCY: "cycle",
}


def _kind_style(kind: ProblemKind) -> str:
    return {
        ProblemKind.SELF_DEPENDENCY: "yellow",
        ProblemKind.MISSING_REFERENCE: "magenta",
        ProblemKind.DUPLICATE_DEPENDENCY: "cyan",
        ProblemKind.CIRCULAR_DEPENDENCY: "bold red",
    }.get(kind, "white")


def _priority_style(priority: str) -> str:
    return {
        "high": "bold red",
        "medium": "bold yellow",
        "low": "dim",
    }.get(priority, "white")


def _status_style(status: str) -> str:
    return {
        "pending": "magenta",
        "in-progress": "cyan",
        "done": "green",
        "completed": "green",
        "blocked": "red",
        "deferred": "dim",
        "cancelled": "dim",
        "review": "yellow",
    }.get(status, "white")


def _inline_addresses(addresses: Iterable[object]) -> str:
    items = [str(address) for address in addresses]
    return ", ".join(items) if items else "-"


def render_problems_plain(problems: list[Problem]) -> str:
    if not problems:
        return "No dependency problems found."
    width = max(len(label) for label in KIND_LABELS.values())
    lines = [f"Found {len(problems)} dependency problem(s):"]
    for problem in problems:
        lines.append(f"  {KIND_LABELS[problem.kind].ljust(width)}  {problem.describe()}")
    return "\n".join(lines)


def render_problems_rich(problems: list[Problem]):
    from rich import box
    from rich.table import Table
    from rich.text import Text

    if not problems:
        return Text("✓ No dependency problems found.", style="green")

    table = Table(
        box=box.SIMPLE_HEAVY,
        show_header=True,
        header_style="bold white",
        pad_edge=False,
        title=f"{len(problems)} dependency problem(s)",
    )
    table.add_column("kind", no_wrap=True)
    table.add_column("address", style="bold", no_wrap=True)
    table.add_column("dependency", no_wrap=True)
    table.add_column("detail")
    for problem in problems:
        table.add_row(
            Text(KIND_LABELS[problem.kind], style=_kind_style(problem.kind)),
            str(problem.address),
            str(problem.dependency),
            problem.describe(),
        )
    return table


def render_problems_json(problems: list[Problem]) -> str:
    return json.dumps([problem.to_dict() for problem in problems], indent=2)


def render_repair_plain(result: RepairResult) -> str:
    if not result.changed:
        return "No dependency changes needed."
    lines = [f"Removed {result.total} dependency reference(s):"]
    for removed in result.removed:
        lines.append(
            f"  {removed.address} -x-> {removed.dependency}  ({KIND_LABELS[removed.reason]})"
        )
    return "\n".join(lines)


def render_repair_rich(result: RepairResult):
    from rich.console import Group
    from rich.text import Text

    if not result.changed:
        return Text("✓ No dependency changes needed.", style="green")

    lines = [Text(f"Removed {result.total} dependency reference(s)", style="bold")]
    for removed in result.removed:
        line = Text("  ")
        line.append(str(removed.address), style="bold")
        line.append(" -x-> ")
        line.append(str(removed.dependency))
        line.append("  ")
        line.append(f"({KIND_LABELS[removed.reason]})", style=_kind_style(removed.reason))
        lines.append(line)
    return Group(*lines)


def render_repair_json(result: RepairResult) -> str:
    payload = {
        "changes": {str(address): count for address, count in result.changes.items()},
        "removed": [removed.to_dict() for removed in result.removed],
    }
    return json.dumps(payload, indent=2)


def _outcome_line(outcome: MoveOutcome) -> str:
    if outcome.skipped:
        return f"- Skipped {outcome.source} -> {outcome.destination} (same id)"
    if outcome.ok and outcome.moved is not None:
        moved = outcome.moved
        line = f"✓ Moved {outcome.source} to {moved.destination}"
        if moved.promoted:
            promoted = ", ".join(f"{old} -> {new}" for old, new in moved.promoted)
            line += f" (promoted: {promoted})"
        return line
    return f"✗ Failed to move {outcome.source} to {outcome.destination}: {outcome.error}"


def render_batch_plain(result: BatchResult) -> str:
    lines = [_outcome_line(outcome) for outcome in result.outcomes]
    for warning in result.warnings:
        lines.append(f"Warning: {warning.describe()}")
    return "\n".join(lines)


def render_batch_rich(result: BatchResult):
    from rich.console import Group
    from rich.text import Text

    lines = []
    for outcome in result.outcomes:
        lines.append(Text(_outcome_line(outcome), style="green" if outcome.ok else "red"))
    for warning in result.warnings:
        lines.append(Text(f"Warning: {warning.describe()}", style="yellow"))
    return Group(*lines)


def render_batch_json(result: BatchResult) -> str:
    payload = {
        "ok": result.ok,
        "results": [outcome.to_dict() for outcome in result.outcomes],
        "warnings": [warning.to_dict() for warning in result.warnings],
    }
    return json.dumps(payload, indent=2)


def render_next_plain(candidate: Candidate | None) -> str:
    if candidate is None:
        return "No eligible task found. All pending work is blocked or done."
    entity = candidate.entity
    lines = [
        f"Next: {candidate.address} {entity.title}",
        f"[{entity.status}] [{candidate.priority}]",
        f"dependencies: {_inline_addresses(entity.dependencies)}",
    ]
    if candidate.parent is not None:
        lines.append(f"parent: {candidate.parent.id} {candidate.parent.title}")
    if entity.description:
        lines.extend(["", entity.description])
    return "\n".join(lines)


def render_next_rich(candidate: Candidate | None):
    from rich.console import Group
    from rich.text import Text

    if candidate is None:
        return Text("No eligible task found. All pending work is blocked or done.", style="yellow")

    entity = candidate.entity
    title = Text()
    title.append(f"{candidate.address} ", style="dim")
    title.append(entity.title, style="bold")

    chips = Text()
    chips.append(f"[{entity.status}]", style=_status_style(entity.status))
    chips.append(" ")
    chips.append(f"[{candidate.priority}]", style=_priority_style(candidate.priority))

    lines = [title, chips, Text(f"dependencies: {_inline_addresses(entity.dependencies)}")]
    if candidate.parent is not None:
        lines.append(Text(f"parent: {candidate.parent.id} {candidate.parent.title}", style="dim"))
    if entity.description:
        lines.extend([Text(""), Text(entity.description)])
    return Group(*lines)


def render_next_json(candidate: Candidate | None) -> str:
    return json.dumps(candidate.to_dict() if candidate is not None else None, indent=2)
