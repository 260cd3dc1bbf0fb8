"""Workspace access for tasktrack.

This module maps spec names to their documents under a project root
(``<root>/.kiro/specs/<spec>/tasks.md`` by default) and runs the engine's
operations against them with input validation, structured error logging and
observability events.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .errors import ErrorCode, InvalidArgumentError, SpecNotFoundError, TaskNotFoundError
from .models import RequirementsValidation, TaskGroup, TaskUpdate
from .resolver import TaskGroupResolver
from .status import TaskStatus, coerce_status
from .tracker import Executor, TaskTracker
from .tasktrack_logging import (
    log_batch_completed,
    log_error_with_context,
    log_failure_cascade,
    log_group_queued,
    log_operation,
    log_performance,
    log_task_status_change,
    observability_hooks,
)

_SPEC_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class Workspace:
    """Run task lifecycle operations against the specs of one project."""

    SPECS_DIR_ENV = "TASKTRACK_SPECS_DIR"
    DEFAULT_SPECS_DIR = ".kiro/specs"
    TASKS_FILE = "tasks.md"
    REQUIREMENTS_FILE = "requirements.md"

    def __init__(self, root: Union[Path, str]):
        """Initialize workspace with given project root."""
        logger = logging.getLogger("tasktrack.workspace")

        try:
            self.root = Path(root).expanduser().resolve()
            if not self.root.is_dir():
                raise InvalidArgumentError(f"Project root '{root}' is not a directory")

            self.specs_dir = self.root / os.getenv(self.SPECS_DIR_ENV, self.DEFAULT_SPECS_DIR)
            self.resolver = TaskGroupResolver()
            self.tracker = TaskTracker(self.resolver)

            logger.debug(f"Workspace initialized at {self.root}")
            observability_hooks.log_event("workspace_initialized", root=str(self.root), specs_dir=str(self.specs_dir))

        except Exception as e:
            logger.error(f"Failed to initialize workspace: {e}")
            log_error_with_context(e, {"operation": "workspace_init", "root": str(root)})
            raise

    # ------------------------------------------------------------------
    # Spec discovery
    # ------------------------------------------------------------------

    def list_specs(self) -> List[Dict[str, Any]]:
        """Enumerate spec folders under the specs directory."""
        if not self.specs_dir.is_dir():
            return []

        specs: List[Dict[str, Any]] = []
        for spec_dir in sorted(p for p in self.specs_dir.iterdir() if p.is_dir()):
            tasks_path = spec_dir / self.TASKS_FILE
            requirements_path = spec_dir / self.REQUIREMENTS_FILE
            specs.append({
                "spec_name": spec_dir.name,
                "path": str(spec_dir),
                "tasks_path": str(tasks_path) if tasks_path.exists() else None,
                "requirements_path": str(requirements_path) if requirements_path.exists() else None,
            })
        return specs

    def _validate_spec_name(self, spec_name: str) -> str:
        if not spec_name or not spec_name.strip():
            raise InvalidArgumentError("Spec name cannot be empty", code=ErrorCode.INVALID_SPEC_NAME)
        name = spec_name.strip()
        if not _SPEC_NAME_PATTERN.match(name) or ".." in name:
            raise InvalidArgumentError(f"Invalid spec name '{spec_name}'", code=ErrorCode.INVALID_SPEC_NAME)
        return name

    @staticmethod
    def _require_id(value: str, label: str) -> str:
        if not value or not value.strip():
            raise InvalidArgumentError(f"{label} cannot be empty")
        return value.strip()

    def spec_dir(self, spec_name: str) -> Path:
        return self.specs_dir / self._validate_spec_name(spec_name)

    def tasks_path(self, spec_name: str) -> Path:
        """Get the tasks document path for a spec."""
        return self.spec_dir(spec_name) / self.TASKS_FILE

    def requirements_path(self, spec_name: str) -> Path:
        return self.spec_dir(spec_name) / self.REQUIREMENTS_FILE

    def _existing_tasks_path(self, spec_name: str) -> Path:
        path = self.tasks_path(spec_name)
        if not path.is_file():
            raise SpecNotFoundError(f"No {self.TASKS_FILE} found for spec '{spec_name}' at {path}")
        return path

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def load_groups(self, spec_name: str) -> List[TaskGroup]:
        """Parse and resolve every task group of a spec."""
        path = self._existing_tasks_path(spec_name)
        return self.resolver.parse_groups(self.tracker.read_document(path))

    def _get_group(self, spec_name: str, group_id: str) -> TaskGroup:
        group = self.resolver.find_group(self.load_groups(spec_name), group_id)
        if group is None:
            raise TaskNotFoundError(
                f"Task group '{group_id}' not found in spec '{spec_name}'",
                code=ErrorCode.GROUP_NOT_FOUND,
            )
        return group

    def list_groups(self, spec_name: str) -> List[Dict[str, Any]]:
        """Summaries of every group in a spec, in document order."""
        return [self.resolver.summarize_group(group) for group in self.load_groups(spec_name)]

    def group_status(self, spec_name: str, group_id: str) -> Dict[str, Any]:
        """Full status tree of one group plus its progress summary."""
        group = self._get_group(spec_name, self._require_id(group_id, "Group ID"))
        summary = self.resolver.summarize_group(group)
        return {
            **group.to_dict(),
            "next_task": summary["next_task"],
            "blocked_tasks": summary["blocked_tasks"],
        }

    def next_task(self, spec_name: str, group_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Next executable task of a group, or of the first group that has one."""
        groups = self.load_groups(spec_name)
        if group_id:
            group = self.resolver.find_group(groups, group_id)
            if group is None:
                raise TaskNotFoundError(
                    f"Task group '{group_id}' not found in spec '{spec_name}'",
                    code=ErrorCode.GROUP_NOT_FOUND,
                )
            groups = [group]

        for group in groups:
            task = self.resolver.find_next_executable_task(group)
            if task is not None:
                return {"group_id": group.group_id, "task": task.to_dict()}
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @log_performance("workspace_update_task_status")
    def update_task_status(self, spec_name: str, task_id: str, status: Union[TaskStatus, str]) -> TaskUpdate:
        """Set one task's status and report what it was before."""
        logger = logging.getLogger("tasktrack.workspace")

        try:
            task_id = self._require_id(task_id, "Task ID")
            new_status = coerce_status(status)

            with log_operation("update_task_status", spec_name=spec_name, task_id=task_id, status=new_status.value):
                path = self._existing_tasks_path(spec_name)
                update = self.tracker.update_task_status(path, task_id, new_status)

            log_task_status_change(
                spec_name,
                task_id,
                update.previous_status.value if update.previous_status else None,
                update.new_status.value,
            )
            logger.info(f"Updated task '{task_id}' in spec '{spec_name}' to {new_status.value}")
            return update

        except Exception as e:
            logger.error(f"Failed to update task '{task_id}' in spec '{spec_name}': {e}")
            log_error_with_context(e, {
                "operation": "update_task_status",
                "spec_name": spec_name,
                "task_id": task_id,
                "status": str(status),
            })
            raise

    @log_performance("workspace_queue_group")
    def queue_group(self, spec_name: str, group_id: str) -> List[str]:
        """Queue every not_started leaf of a group; returns the queued ids."""
        logger = logging.getLogger("tasktrack.workspace")

        try:
            group_id = self._require_id(group_id, "Group ID")
            with log_operation("queue_group", spec_name=spec_name, group_id=group_id):
                path = self._existing_tasks_path(spec_name)
                queued = self.tracker.queue_group_tasks(path, group_id)

            log_group_queued(spec_name, group_id, queued)
            logger.info(f"Queued {len(queued)} task(s) in group '{group_id}' of spec '{spec_name}'")
            return queued

        except Exception as e:
            logger.error(f"Failed to queue group '{group_id}' in spec '{spec_name}': {e}")
            log_error_with_context(e, {
                "operation": "queue_group",
                "spec_name": spec_name,
                "group_id": group_id,
            })
            raise

    @log_performance("workspace_report_failure")
    def report_failure(self, spec_name: str, group_id: str, task_id: str) -> List[str]:
        """Mark a task and its group failed, un-queueing the tasks after it."""
        logger = logging.getLogger("tasktrack.workspace")

        try:
            group_id = self._require_id(group_id, "Group ID")
            task_id = self._require_id(task_id, "Task ID")
            with log_operation("report_failure", spec_name=spec_name, group_id=group_id, task_id=task_id):
                path = self._existing_tasks_path(spec_name)
                changed = self.tracker.handle_task_failure(path, group_id, task_id)

            reverted = [changed_id for changed_id in changed if changed_id not in (group_id, task_id)]
            log_failure_cascade(spec_name, group_id, task_id, reverted)
            logger.warning(f"Task '{task_id}' failed in group '{group_id}' of spec '{spec_name}'")
            return changed

        except Exception as e:
            logger.error(f"Failed to record failure of '{task_id}' in spec '{spec_name}': {e}")
            log_error_with_context(e, {
                "operation": "report_failure",
                "spec_name": spec_name,
                "group_id": group_id,
                "task_id": task_id,
            })
            raise

    @log_performance("workspace_run_tasks")
    def run_tasks(self, spec_name: str, task_ids: Iterable[str],
                  executors: Mapping[str, Executor]) -> List[TaskUpdate]:
        """Run executors for the given tasks in order, persisting each outcome."""
        logger = logging.getLogger("tasktrack.workspace")
        task_ids = list(task_ids)

        try:
            with log_operation("run_tasks", spec_name=spec_name, task_count=len(task_ids)):
                path = self._existing_tasks_path(spec_name)
                updates = self.tracker.run_tasks(path, task_ids, executors)

            for update in updates:
                log_task_status_change(
                    spec_name,
                    update.task_id,
                    update.previous_status.value if update.previous_status else None,
                    update.new_status.value,
                    error=update.error,
                )
            failed = sum(1 for update in updates if not update.succeeded)
            log_batch_completed(spec_name, len(updates), failed)
            logger.info(f"Ran {len(updates)} task(s) in spec '{spec_name}', {failed} failed")
            return updates

        except Exception as e:
            logger.error(f"Failed to run tasks in spec '{spec_name}': {e}")
            log_error_with_context(e, {
                "operation": "run_tasks",
                "spec_name": spec_name,
                "task_ids": task_ids,
            })
            raise

    # ------------------------------------------------------------------
    # Requirement traceability
    # ------------------------------------------------------------------

    def known_requirement_ids(self, spec_name: str) -> List[str]:
        path = self.requirements_path(spec_name)
        if not path.is_file():
            raise SpecNotFoundError(f"No {self.REQUIREMENTS_FILE} found for spec '{spec_name}' at {path}")
        return self.resolver.extract_requirement_ids(path.read_text(encoding="utf-8"))

    def validate_requirements(self, spec_name: str, group_id: str) -> RequirementsValidation:
        """Check a group's requirement references against requirements.md."""
        logger = logging.getLogger("tasktrack.workspace")

        try:
            group = self._get_group(spec_name, self._require_id(group_id, "Group ID"))
            validation = self.resolver.validate_requirements(group, self.known_requirement_ids(spec_name))
            logger.info(
                f"Requirement check for group '{group.group_id}' in spec '{spec_name}': "
                f"{len(validation.referenced)} referenced, {len(validation.missing)} missing"
            )
            return validation

        except Exception as e:
            log_error_with_context(e, {
                "operation": "validate_requirements",
                "spec_name": spec_name,
                "group_id": group_id,
            })
            raise
