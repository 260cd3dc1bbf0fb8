"""Data models for tasktrack.

This module contains the structures produced by parsing a task document:
individual tasks, subgroups and groups, together with the result records
returned by status transitions, requirement validation and verification.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from .status import TaskGroupStatus, TaskStatus


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _status_value(status: Optional[TaskStatus]) -> Optional[str]:
    return status.value if status is not None else None


@dataclass(slots=True)
class ParsedTask:
    """A single checkbox entry read from a task document."""

    task_id: str
    depth: int
    description: str
    status: Optional[TaskStatus]  # None when the marker is not a valid status character
    marker: str
    optional: bool = False
    is_blocked: bool = False
    requirements: List[str] = field(default_factory=list)
    line_index: int = -1
    effective_status: Optional[TaskStatus] = None

    @property
    def has_valid_status(self) -> bool:
        return self.status is not None

    @property
    def parent_id(self) -> Optional[str]:
        """Identifier of the enclosing task, derived from the dotted path."""
        if "." not in self.task_id:
            return None
        return self.task_id.rsplit(".", 1)[0]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "task_id": self.task_id,
            "depth": self.depth,
            "description": self.description,
            "status": _status_value(self.status),
            "marker": self.marker,
            "effective_status": _status_value(self.effective_status),
            "optional": self.optional,
            "is_blocked": self.is_blocked,
            "requirements": list(self.requirements),
            "line": self.line_index + 1,
        }


@dataclass(slots=True)
class TaskSubgroup:
    """A depth-2 task together with its depth-3 children."""

    subgroup_id: str
    description: str
    raw_status: Optional[TaskStatus]
    marker: str
    optional: bool = False
    tasks: List[ParsedTask] = field(default_factory=list)
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    status: TaskGroupStatus = TaskGroupStatus.NOT_STARTED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "subgroup_id": self.subgroup_id,
            "description": self.description,
            "raw_status": _status_value(self.raw_status),
            "optional": self.optional,
            "status": self.status.value,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "tasks": [task.to_dict() for task in self.tasks],
        }


@dataclass(slots=True)
class TaskGroup:
    """A depth-1 task and everything nested beneath it."""

    group_id: str
    description: str
    raw_status: Optional[TaskStatus]
    marker: str
    optional: bool = False
    requirements: List[str] = field(default_factory=list)
    line_index: int = -1
    tasks: List[ParsedTask] = field(default_factory=list)
    subgroups: List[TaskSubgroup] = field(default_factory=list)
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    status: TaskGroupStatus = TaskGroupStatus.NOT_STARTED

    def subgroup_for(self, task_id: str) -> Optional[TaskSubgroup]:
        """Return the subgroup seeded by the given depth-2 task, if it has children."""
        for subgroup in self.subgroups:
            if subgroup.subgroup_id == task_id:
                return subgroup
        return None

    def iter_tasks(self) -> Iterator[ParsedTask]:
        """Yield every depth-2 and depth-3 task in document order."""
        for task in self.tasks:
            yield task
            subgroup = self.subgroup_for(task.task_id)
            if subgroup is not None:
                yield from subgroup.tasks

    def leaf_tasks(self) -> List[ParsedTask]:
        """Tasks that carry their own executable status, in document order."""
        leaves: List[ParsedTask] = []
        for task in self.tasks:
            subgroup = self.subgroup_for(task.task_id)
            if subgroup is None:
                leaves.append(task)
            else:
                leaves.extend(subgroup.tasks)
        return leaves

    def find_task(self, task_id: str) -> Optional[ParsedTask]:
        for task in self.iter_tasks():
            if task.task_id == task_id:
                return task
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "group_id": self.group_id,
            "description": self.description,
            "raw_status": _status_value(self.raw_status),
            "optional": self.optional,
            "requirements": list(self.requirements),
            "status": self.status.value,
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "tasks": [task.to_dict() for task in self.tasks],
            "subgroups": [subgroup.to_dict() for subgroup in self.subgroups],
        }


@dataclass(slots=True)
class TaskUpdate:
    """Outcome of persisting one task's status."""

    task_id: str
    previous_status: Optional[TaskStatus]
    new_status: TaskStatus
    error: Optional[str] = None
    timestamp: str = field(default_factory=_utc_timestamp)

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.new_status != TaskStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "task_id": self.task_id,
            "previous_status": _status_value(self.previous_status),
            "new_status": self.new_status.value,
            "error": self.error,
            "timestamp": self.timestamp,
        }


@dataclass(slots=True)
class RequirementsValidation:
    """Traceability of a group's tasks to requirement identifiers."""

    group_id: str
    referenced: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    tasks_without_requirements: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.missing

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "group_id": self.group_id,
            "valid": self.valid,
            "referenced": list(self.referenced),
            "missing": list(self.missing),
            "tasks_without_requirements": list(self.tasks_without_requirements),
        }


@dataclass(slots=True)
class VerificationCheck:
    """A single named pass/fail check."""

    name: str
    passed: bool
    message: str
    expected: Optional[str] = None
    actual: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        data: Dict[str, Any] = {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
        }
        if self.expected is not None:
            data["expected"] = self.expected
        if self.actual is not None:
            data["actual"] = self.actual
        return data
