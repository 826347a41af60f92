from __future__ import annotations

import json
import os
from pathlib import Path

import pytest
import yaml

from taskgraph import storage
from taskgraph.models import Settings, SubtaskAddress, TaskAddress, TaskStoreError


def _write_tasks(path: Path, payload: object) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _write_config(tasks_file: Path, content: str) -> None:
    tasks_file.parent.mkdir(parents=True, exist_ok=True)
    (tasks_file.parent / "config.yaml").write_text(content, encoding="utf-8")


def _sample_payload() -> dict:
    return {
        "tasks": [
            {
                "id": 1,
                "title": "Setup",
                "description": "",
                "details": "",
                "testStrategy": "run it",
                "status": "done",
                "priority": "high",
                "dependencies": [],
                "subtasks": [],
            },
            {
                "id": 2,
                "title": "Core",
                "status": "pending",
                "dependencies": [1, "1"],
                "owner": "sam",
                "subtasks": [
                    {"id": 1, "title": "Parser", "dependencies": ["1"]},
                    {"id": 2, "title": "Printer", "dependencies": [1, "3.1"], "notes": "keep"},
                ],
            },
            {"id": 3, "title": "Docs", "dependencies": ["2.2"], "subtasks": [{"id": 1, "title": "API"}]},
        ],
        "metadata": {"projectName": "demo"},
    }


def test_load_document_parses_dependencies_relative_to_owner(tmp_path: Path) -> None:
    path = _write_tasks(tmp_path / "tasks.json", _sample_payload())
    document = storage.load_document(path)

    core = document.tasks[1]
    assert core.dependencies == [TaskAddress(1), TaskAddress(1)]
    assert core.priority == "medium"
    assert core.extra == {"owner": "sam"}
    assert core.subtasks[0].dependencies == [TaskAddress(1)]
    assert core.subtasks[1].dependencies == [SubtaskAddress(2, 1), SubtaskAddress(3, 1)]
    assert core.subtasks[1].priority is None
    assert document.tasks[2].dependencies == [SubtaskAddress(2, 2)]
    assert document.extra == {"metadata": {"projectName": "demo"}}


def test_large_bare_subtask_dependency_is_a_task_reference(tmp_path: Path) -> None:
    payload = {
        "tasks": [
            {"id": 100, "title": "Big"},
            {"id": 1, "title": "Host", "subtasks": [{"id": 1, "title": "x", "dependencies": [100]}]},
        ]
    }
    path = _write_tasks(tmp_path / "tasks.json", payload)
    document = storage.load_document(path)
    assert document.tasks[1].subtasks[0].dependencies == [TaskAddress(100)]

    strict = storage.load_document(path, Settings(sibling_ref_limit=1000))
    assert strict.tasks[1].subtasks[0].dependencies == [SubtaskAddress(1, 100)]


def test_save_then_load_preserves_document(tmp_path: Path) -> None:
    path = _write_tasks(tmp_path / "tasks.json", _sample_payload())
    document = storage.load_document(path)
    out = tmp_path / "out" / "tasks.json"
    storage.save_document(out, document)

    reloaded = storage.load_document(out)
    assert reloaded == document

    raw = json.loads(out.read_text(encoding="utf-8"))
    core = raw["tasks"][1]
    assert core["dependencies"] == [1, 1]
    assert core["owner"] == "sam"
    assert core["subtasks"][0]["dependencies"] == ["1"]
    assert core["subtasks"][1]["dependencies"] == [1, "3.1"]
    assert core["subtasks"][1]["notes"] == "keep"
    assert raw["tasks"][0]["testStrategy"] == "run it"
    assert raw["tasks"][2]["dependencies"] == ["2.2"]
    assert raw["metadata"] == {"projectName": "demo"}


def test_save_uses_configured_indent(tmp_path: Path) -> None:
    path = _write_tasks(tmp_path / "tasks.json", {"tasks": [{"id": 1, "title": "a"}]})
    document = storage.load_document(path)
    storage.save_document(path, document, Settings(indent=4))
    assert '\n    "tasks"' in path.read_text(encoding="utf-8")


def test_save_is_atomic_and_leaves_no_temp_files(tmp_path: Path) -> None:
    path = _write_tasks(tmp_path / "tasks.json", _sample_payload())
    storage.save_document(path, storage.load_document(path))
    assert sorted(p.name for p in tmp_path.iterdir()) == ["tasks.json"]


def test_failed_replace_keeps_original(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    path = _write_tasks(tmp_path / "tasks.json", _sample_payload())
    original = path.read_text(encoding="utf-8")
    document = storage.load_document(path)
    document.tasks.pop()

    def _boom(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", _boom)
    with pytest.raises(TaskStoreError, match="disk full"):
        storage.save_document(path, document)
    assert path.read_text(encoding="utf-8") == original
    assert sorted(p.name for p in tmp_path.iterdir()) == ["tasks.json"]


def test_missing_file_raises_with_init_hint(tmp_path: Path) -> None:
    with pytest.raises(TaskStoreError) as excinfo:
        storage.load_document(tmp_path / "tasks.json")
    assert excinfo.value.hint == storage.INIT_HINT
    assert "taskgraph init" in str(excinfo.value)


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ([], "'tasks' list"),
        ({"tasks": {}}, "'tasks' list"),
        ({"tasks": [{"id": 1, "title": "a"}, {"id": 1, "title": "b"}]}, "Duplicate task id 1"),
        ({"tasks": [{"id": 0, "title": "a"}]}, "invalid id"),
        ({"tasks": [{"id": 1, "title": "a", "status": "nope"}]}, "Invalid status"),
        ({"tasks": [{"id": 1, "title": "a", "priority": "urgent"}]}, "Invalid priority"),
        ({"tasks": [{"id": 1, "title": "a", "dependencies": ["x.y"]}]}, "Invalid dependency"),
        (
            {"tasks": [{"id": 1, "title": "a", "subtasks": [{"id": 1, "title": "s"}, {"id": 1, "title": "t"}]}]},
            "Duplicate subtask id 1.1",
        ),
    ],
)
def test_invalid_documents_raise_store_error(tmp_path: Path, payload: object, message: str) -> None:
    path = _write_tasks(tmp_path / "tasks.json", payload)
    with pytest.raises(TaskStoreError, match=message):
        storage.load_document(path)


def test_invalid_json_raises_store_error(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    path.write_text('{"tasks": [', encoding="utf-8")
    with pytest.raises(TaskStoreError, match="not valid JSON"):
        storage.load_document(path)


def test_invalid_utf8_raises_store_error_and_soft_load_returns_none(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    path.write_bytes(b'{"tasks": [{"id": 1, "title": "\xff\xfe"}]}')
    with pytest.raises(TaskStoreError, match="not valid UTF-8") as excinfo:
        storage.load_document(path)
    assert excinfo.value.hint == storage.INIT_HINT
    assert storage.try_load_document(path) is None


def test_try_load_document_is_soft(tmp_path: Path) -> None:
    path = tmp_path / "tasks.json"
    assert storage.try_load_document(path) is None
    path.write_text('{"tasks": [{"id": 1', encoding="utf-8")
    assert storage.try_load_document(path) is None
    _write_tasks(path, {"tasks": [{"id": 1, "title": "a"}]})
    document = storage.try_load_document(path)
    assert document is not None
    assert document.tasks[0].title == "a"


def test_resolve_settings_defaults_when_missing(tmp_path: Path) -> None:
    warnings: list[str] = []
    settings = storage.resolve_settings(tmp_path / "tasks" / "tasks.json", warn=warnings.append)
    assert settings == Settings()
    assert warnings == []


def test_resolve_settings_reads_valid_values(tmp_path: Path) -> None:
    tasks_file = tmp_path / "tasks" / "tasks.json"
    _write_config(
        tasks_file,
        (
            "settings:\n"
            "  indent: 4\n"
            "  check_cycles: false\n"
            "  validate_after_move: false\n"
        ),
    )
    settings = storage.resolve_settings(tasks_file)
    assert settings == Settings(indent=4, check_cycles=False, validate_after_move=False)


def test_resolve_settings_invalid_values_warn_and_fall_back(tmp_path: Path) -> None:
    tasks_file = tmp_path / "tasks" / "tasks.json"
    _write_config(
        tasks_file,
        (
            "extra_root: 1\n"
            "settings:\n"
            "  indent: true\n"
            "  sibling_ref_limit: 0\n"
            "  check_cycles: maybe\n"
            "  colour: blue\n"
        ),
    )
    warnings: list[str] = []
    settings = storage.resolve_settings(tasks_file, warn=warnings.append)
    assert settings == Settings()
    assert any("Unsupported config key 'extra_root'" in message for message in warnings)
    assert any("Invalid settings.indent" in message for message in warnings)
    assert any("Invalid settings.sibling_ref_limit" in message for message in warnings)
    assert any("Invalid settings.check_cycles" in message for message in warnings)
    assert any("Unsupported settings key 'colour'" in message for message in warnings)


def test_resolve_settings_unparseable_config_warns(tmp_path: Path) -> None:
    tasks_file = tmp_path / "tasks" / "tasks.json"
    _write_config(tasks_file, "settings: [unclosed\n")
    warnings: list[str] = []
    assert storage.resolve_settings(tasks_file, warn=warnings.append) == Settings()
    assert any("Unable to parse config" in message for message in warnings)


def test_init_layout_is_idempotent(tmp_path: Path) -> None:
    tasks_file = storage.default_tasks_file(tmp_path)
    assert storage.init_layout(tasks_file) == (True, True)
    assert json.loads(tasks_file.read_text(encoding="utf-8")) == {"tasks": []}
    cfg = yaml.safe_load(storage.config_path(tasks_file).read_text(encoding="utf-8"))
    assert cfg["settings"]["sibling_ref_limit"] == 100

    _write_tasks(tasks_file, {"tasks": [{"id": 1, "title": "keep"}]})
    assert storage.init_layout(tasks_file) == (False, False)
    assert storage.load_document(tasks_file).tasks[0].title == "keep"


def test_find_tasks_file_searches_upward(tmp_path: Path) -> None:
    tasks_file = _write_tasks(tmp_path / "tasks" / "tasks.json", {"tasks": []})
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    assert storage.find_tasks_file(nested) == tasks_file.resolve()
    assert storage.find_tasks_file(tmp_path / "tasks") == tasks_file.resolve()
