from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner
import yaml

from taskgraph.cli import app


runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _write(tmp_path: Path, *raw: dict) -> Path:
    path = tmp_path / "tasks" / "tasks.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"tasks": list(raw)}, indent=2), encoding="utf-8")
    return path


def _raw_tasks(path: Path) -> list[dict]:
    return json.loads(path.read_text(encoding="utf-8"))["tasks"]


def _scenario(tmp_path: Path) -> Path:
    return _write(
        tmp_path,
        {"id": 1, "title": "Setup", "status": "done", "dependencies": []},
        {"id": 2, "title": "Core", "dependencies": [1]},
        {"id": 3, "title": "Docs", "dependencies": [99]},
    )


def test_init_idempotent(tmp_path: Path) -> None:
    target = tmp_path / "tasks" / "tasks.json"
    r1 = runner.invoke(app, ["init", "--file", str(target)])
    assert r1.exit_code == 0
    assert "Created tasks file" in r1.output
    r2 = runner.invoke(app, ["init", "--file", str(target)])
    assert r2.exit_code == 0
    assert "Using existing tasks file" in r2.output
    assert json.loads(target.read_text(encoding="utf-8")) == {"tasks": []}
    cfg = yaml.safe_load((target.parent / "config.yaml").read_text(encoding="utf-8"))
    assert cfg["settings"]["check_cycles"] is True


def test_init_uses_current_directory(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0
    assert (tmp_path / "tasks" / "tasks.json").is_file()


def test_validate_dependencies_plain(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["validate-dependencies", "--file", str(path)])
    assert result.exit_code == 0
    assert "Found 1 dependency problem(s):" in result.output
    assert "missing" in result.output


def test_validate_dependencies_json(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["validate-dependencies", "--file", str(path), "--json"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload == [{"kind": "missing_reference", "address": "3", "dependency": "99", "cycle": []}]


def test_fix_dependencies_writes_file(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["fix-dependencies", "--file", str(path)])
    assert result.exit_code == 0
    assert "Removed 1 dependency reference(s):" in result.output
    assert _raw_tasks(path)[2]["dependencies"] == []

    again = runner.invoke(app, ["fix-dependencies", "--file", str(path)])
    assert "No dependency changes needed." in again.output


def test_fix_dependencies_dry_run_json(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    before = path.read_text(encoding="utf-8")
    result = runner.invoke(app, ["fix-dependencies", "--file", str(path), "--dry-run", "--json"])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["changes"] == {"3": 1}
    assert payload["removed"] == [{"address": "3", "dependency": "99", "reason": "missing_reference"}]
    assert path.read_text(encoding="utf-8") == before


def test_move_single(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["move", "--from", "2", "--to", "4", "--file", str(path)])
    assert result.exit_code == 0
    assert "✓ Moved 2 to 4" in result.output
    assert [task["id"] for task in _raw_tasks(path)] == [1, 3, 4]


def test_move_batch_json(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(
        app,
        ["move", "--from", "2,3", "--to", "3,5", "--file", str(path), "--json"],
    )
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["ok"] is True
    assert [item["destination"] for item in payload["results"]] == ["3", "5"]
    raw = _raw_tasks(path)
    assert [(task["id"], task["title"]) for task in raw] == [(1, "Setup"), (3, "Core"), (5, "Docs")]


def test_move_failure_exits_nonzero(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["move", "--from", "2", "--to", "3", "--file", str(path)])
    assert result.exit_code == 1
    assert "already exists" in result.output


def test_move_batch_partial_failure_reports_each_pair(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["move", "--from", "2,3", "--to", "1,6", "--file", str(path)])
    assert result.exit_code == 1
    assert "✗ Failed to move 2 to 1" in result.output
    assert "✓ Moved 3 to 6" in result.output


def test_move_batch_reports_bad_and_same_ids_per_pair(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["move", "--from", "2,x,3", "--to", "2,4,6", "--file", str(path)])
    assert result.exit_code == 1
    assert "- Skipped 2 -> 2 (same id)" in result.output
    assert "✗ Failed to move x to 4: Invalid address" in result.output
    assert "✓ Moved 3 to 6" in result.output
    assert [task["id"] for task in _raw_tasks(path)] == [1, 2, 6]


def test_move_rejects_mismatched_lists(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["move", "--from", "2,3", "--to", "4", "--file", str(path)])
    assert result.exit_code == 1
    assert "must match" in result.output


def test_next_plain_and_json(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    plain = runner.invoke(app, ["next", "--file", str(path)])
    assert plain.exit_code == 0
    assert "Next: 2 Core" in plain.output

    result = runner.invoke(app, ["next", "--file", str(path), "--json"])
    payload = json.loads(result.stdout)
    assert payload["address"] == "2"
    assert payload["dependencies"] == ["1"]


def test_next_reports_when_nothing_is_eligible(tmp_path: Path) -> None:
    path = _write(tmp_path, {"id": 1, "title": "a", "status": "done"})
    result = runner.invoke(app, ["next", "--file", str(path)])
    assert result.exit_code == 0
    assert "No eligible task found" in result.output


def test_add_and_remove_dependency(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    added = runner.invoke(app, ["add-dependency", "--id", "3", "--depends-on", "2", "--file", str(path)])
    assert added.exit_code == 0
    assert "Added dependency: 3 -> 2" in added.output
    assert _raw_tasks(path)[2]["dependencies"] == [99, 2]

    removed = runner.invoke(app, ["remove-dependency", "-i", "3", "-d", "99", "--file", str(path)])
    assert removed.exit_code == 0
    assert _raw_tasks(path)[2]["dependencies"] == [2]


def test_add_dependency_cycle_is_rejected(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    result = runner.invoke(app, ["add-dependency", "-i", "1", "-d", "2", "--file", str(path)])
    assert result.exit_code == 1
    assert "would create a dependency cycle" in result.output
    assert _raw_tasks(path)[0]["dependencies"] == []


def test_missing_tasks_file_hints_init(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["validate-dependencies"])
    assert result.exit_code == 1
    assert "taskgraph init" in result.output


def test_tasks_file_discovered_from_subdirectory(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    _scenario(tmp_path)
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)
    result = runner.invoke(app, ["next"])
    assert result.exit_code == 0
    assert "Next: 2 Core" in result.output


def test_invalid_config_warns_but_runs(tmp_path: Path) -> None:
    path = _scenario(tmp_path)
    (path.parent / "config.yaml").write_text("settings:\n  indent: wide\n", encoding="utf-8")
    result = runner.invoke(app, ["validate-dependencies", "--file", str(path)])
    assert result.exit_code == 0
    assert "Warning: Invalid settings.indent" in result.output
