"""Unit tests for tasktrack workspace functionality.

This module tests spec discovery, input validation, and the workspace
wrappers around the engine operations, including their observability events.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from tasktrack.errors import (
    ErrorCode,
    InvalidArgumentError,
    InvalidStatusError,
    SpecNotFoundError,
    TaskNotFoundError,
)
from tasktrack.status import TaskStatus
from tasktrack.tasktrack_logging import observability_hooks
from tasktrack.workspace import Workspace


TASKS = (
    "# Implementation Plan\n"
    "\n"
    "- [ ] 1 Parser\n"
    "  - [ ] 1.1 Lines\n"
    "    - [x] 1.1.1 Task line grammar\n"
    "    - _Requirements: 1.1_\n"
    "    - [ ] 1.1.2 Annotation lines\n"
    "    - _Requirements: 1.2, 3.1_\n"
    "  - [ ] 1.2 Builder\n"
    "- [x] 2 Resolver\n"
    "  - [x] 2.1 Aggregation\n"
)

REQUIREMENTS = (
    "# Requirements\n"
    "\n"
    "### Requirement 1\n"
    "\n"
    "1. Parse task lines\n"
    "2. Parse annotations\n"
)


def _make_spec(root: Path, name: str = "engine", tasks: str = TASKS, requirements: str = REQUIREMENTS) -> Path:
    spec_dir = root / ".kiro" / "specs" / name
    spec_dir.mkdir(parents=True)
    (spec_dir / "tasks.md").write_text(tasks, encoding="utf-8")
    if requirements is not None:
        (spec_dir / "requirements.md").write_text(requirements, encoding="utf-8")
    return spec_dir


@pytest.fixture
def workspace(tmp_path):
    _make_spec(tmp_path)
    return Workspace(tmp_path)


@pytest.fixture
def events():
    """Collect observability events fired during a test."""
    captured = []
    names = ("task_status_updated", "group_queued", "task_failure_handled", "task_batch_completed")
    callbacks = {}
    for name in names:
        def callback(_name=name, **data):
            captured.append((_name, data))
        callbacks[name] = callback
        observability_hooks.register_hook(name, callback)
    yield captured
    for name, callback in callbacks.items():
        observability_hooks.unregister_hook(name, callback)


class TestWorkspaceInitialization:
    """Test cases for workspace initialization."""

    def test_default_specs_dir(self, tmp_path):
        workspace = Workspace(tmp_path)
        assert workspace.root == tmp_path.resolve()
        assert workspace.specs_dir == tmp_path.resolve() / ".kiro" / "specs"

    def test_custom_specs_dir(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TASKTRACK_SPECS_DIR", "specs")
        workspace = Workspace(str(tmp_path))
        assert workspace.specs_dir == tmp_path.resolve() / "specs"

    def test_missing_root(self, tmp_path):
        with pytest.raises(InvalidArgumentError):
            Workspace(tmp_path / "nope")


class TestSpecDiscovery:
    """Test cases for spec listing and path resolution."""

    def test_list_specs(self, tmp_path):
        _make_spec(tmp_path, "alpha")
        _make_spec(tmp_path, "beta", requirements=None)
        (tmp_path / ".kiro" / "specs" / "gamma").mkdir()

        specs = Workspace(tmp_path).list_specs()

        assert [spec["spec_name"] for spec in specs] == ["alpha", "beta", "gamma"]
        assert specs[0]["requirements_path"] is not None
        assert specs[1]["requirements_path"] is None
        assert specs[2]["tasks_path"] is None

    def test_list_specs_without_specs_dir(self, tmp_path):
        assert Workspace(tmp_path).list_specs() == []

    @pytest.mark.parametrize("name", ["", "   ", "../escape", "a/b", ".hidden"])
    def test_invalid_spec_names(self, workspace, name):
        with pytest.raises(InvalidArgumentError) as exc_info:
            workspace.tasks_path(name)
        assert exc_info.value.code == ErrorCode.INVALID_SPEC_NAME

    def test_missing_spec(self, workspace):
        with pytest.raises(SpecNotFoundError) as exc_info:
            workspace.load_groups("unknown")
        assert isinstance(exc_info.value, FileNotFoundError)


class TestQueries:
    """Test cases for group listing, status and next task."""

    def test_list_groups(self, workspace):
        groups = workspace.list_groups("engine")

        assert [g["group_id"] for g in groups] == ["1", "2"]
        assert groups[0]["status"] == "in_progress"  # 1.1 is partially done
        assert groups[0]["next_task"] == "1.1.2"
        assert groups[1]["status"] == "completed"

    def test_group_status(self, workspace):
        status = workspace.group_status("engine", "1")

        assert status["group_id"] == "1"
        assert status["total_tasks"] == 2
        assert status["subgroups"][0]["tasks"][0]["requirements"] == ["1.1"]
        assert status["blocked_tasks"] == []

    def test_group_status_unknown_group(self, workspace):
        with pytest.raises(TaskNotFoundError) as exc_info:
            workspace.group_status("engine", "7")
        assert exc_info.value.code == ErrorCode.GROUP_NOT_FOUND

    def test_next_task_across_groups(self, workspace):
        found = workspace.next_task("engine")
        assert found["group_id"] == "1"
        assert found["task"]["task_id"] == "1.1.2"

    def test_next_task_none_left(self, workspace):
        assert workspace.next_task("engine", "2") is None


class TestTransitions:
    """Test cases for workspace status transitions."""

    def test_update_task_status(self, workspace, events):
        update = workspace.update_task_status("engine", "1.2", "in_progress")

        assert update.previous_status == TaskStatus.NOT_STARTED
        assert update.new_status == TaskStatus.IN_PROGRESS
        assert events[-1][0] == "task_status_updated"
        assert events[-1][1]["task_id"] == "1.2"
        assert events[-1][1]["spec_name"] == "engine"

    def test_update_task_status_validation(self, workspace):
        with pytest.raises(InvalidArgumentError):
            workspace.update_task_status("engine", "  ", "completed")
        with pytest.raises(InvalidStatusError):
            workspace.update_task_status("engine", "1.2", "finished")

    def test_update_unknown_task(self, workspace):
        with pytest.raises(TaskNotFoundError):
            workspace.update_task_status("engine", "4.4", "completed")

    def test_queue_group(self, workspace, events):
        queued = workspace.queue_group("engine", "1")

        assert queued == ["1.1.2", "1.2"]
        assert events[-1] == ("group_queued", {
            "timestamp": events[-1][1]["timestamp"],
            "spec_name": "engine",
            "group_id": "1",
            "queued_tasks": ["1.1.2", "1.2"],
        })

    def test_report_failure(self, workspace, events):
        workspace.queue_group("engine", "1")
        changed = workspace.report_failure("engine", "1", "1.1.2")

        assert changed == ["1", "1.1.2", "1.2"]
        name, data = events[-1]
        assert name == "task_failure_handled"
        assert data["reverted_tasks"] == ["1.2"]

        status = workspace.group_status("engine", "1")
        assert status["status"] == "failed"

    def test_run_tasks(self, workspace, events):
        results = workspace.run_tasks("engine", ["1.1.2", "1.2"], {"1.1.2": lambda: None})

        assert [r.new_status for r in results] == [TaskStatus.COMPLETED, TaskStatus.FAILED]
        batch = [data for name, data in events if name == "task_batch_completed"]
        assert batch[-1]["total"] == 2
        assert batch[-1]["failed"] == 1

    def test_run_tasks_missing_spec_logged(self, workspace):
        with patch("tasktrack.workspace.log_error_with_context") as mock_log:
            with pytest.raises(SpecNotFoundError):
                workspace.run_tasks("unknown", ["1.1"], {"1.1": lambda: None})

        error, context = mock_log.call_args[0]
        assert isinstance(error, SpecNotFoundError)
        assert context["operation"] == "run_tasks"
        assert context["spec_name"] == "unknown"
        assert context["task_ids"] == ["1.1"]


class TestRequirementValidation:
    """Test cases for requirement traceability."""

    def test_validate_requirements(self, workspace):
        validation = workspace.validate_requirements("engine", "1")

        assert validation.referenced == ["1.1", "1.2", "3.1"]
        assert validation.missing == ["3.1"]
        assert validation.tasks_without_requirements == ["1.2"]

    def test_missing_requirements_document(self, tmp_path):
        _make_spec(tmp_path, "bare", requirements=None)
        with pytest.raises(SpecNotFoundError):
            Workspace(tmp_path).validate_requirements("bare", "1")
