"""Status resolution for parsed task hierarchies.

The resolver derives everything that is not written in the document itself:
subgroup and group status, per-task counts, the effective status of depth-2
tasks, which tasks are blocked by an earlier failure, and which task should
run next. The tree is recomputed from scratch on every parse.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .models import ParsedTask, RequirementsValidation, TaskGroup, TaskSubgroup
from .parser import build_hierarchy, parse_tasks
from .status import TaskGroupStatus, TaskStatus

logger = logging.getLogger("tasktrack.resolver")

REQUIREMENT_HEADING_PATTERN = re.compile(r"^#{1,6}\s+Requirement\s+(?P<number>\d+)\b", re.IGNORECASE)
HEADING_PATTERN = re.compile(r"^(?P<level>#{1,6})\s+")
CRITERION_PATTERN = re.compile(r"^\s*(?P<number>\d+)\.\s+\S")


def _requirement_sort_key(ref: str) -> Tuple[Tuple[int, Union[int, str]], ...]:
    parts = []
    for part in ref.split("."):
        parts.append((0, int(part)) if part.isdigit() else (1, part))
    return tuple(parts)


class TaskGroupResolver:
    """Derive aggregate status, blocking and next-task selection for task groups."""

    @staticmethod
    def aggregate_statuses(statuses: Iterable[Optional[TaskStatus]]) -> TaskGroupStatus:
        """Combine child statuses using the fixed precedence rule.

        failed beats in_progress; otherwise queued counts as not_started and
        the result is completed, partial or not_started depending on whether
        every child, some children or no child is completed. Unparseable
        statuses (None) count as not_started.
        """
        has_completed = False
        has_not_started = False
        has_in_progress = False

        for status in statuses:
            if status == TaskStatus.FAILED:
                return TaskGroupStatus.FAILED
            if status == TaskStatus.IN_PROGRESS:
                has_in_progress = True
            elif status == TaskStatus.COMPLETED:
                has_completed = True
            else:
                has_not_started = True

        if has_in_progress:
            return TaskGroupStatus.IN_PROGRESS
        if has_completed and not has_not_started:
            return TaskGroupStatus.COMPLETED
        if has_completed:
            return TaskGroupStatus.PARTIAL
        return TaskGroupStatus.NOT_STARTED

    @staticmethod
    def to_task_status(status: TaskGroupStatus) -> TaskStatus:
        """Collapse an aggregate into a single-task status (partial reads as in_progress)."""
        if status == TaskGroupStatus.PARTIAL:
            return TaskStatus.IN_PROGRESS
        return TaskStatus(status.value)

    def parse_groups(self, content: str) -> List[TaskGroup]:
        """Parse a document and resolve every group in it."""
        groups = build_hierarchy(parse_tasks(content))
        for group in groups:
            self.resolve_group(group)
        logger.debug(f"Resolved {len(groups)} task group(s)")
        return groups

    def resolve_group(self, group: TaskGroup) -> TaskGroup:
        """Fill in the derived fields of a group and its subgroups in place."""
        for subgroup in group.subgroups:
            self._resolve_subgroup(subgroup)

        for task in group.tasks:
            task.effective_status = self.effective_status(group, task)

        group.total_tasks = len(group.tasks)
        group.completed_tasks = sum(1 for task in group.tasks if task.effective_status == TaskStatus.COMPLETED)
        group.failed_tasks = sum(1 for task in group.tasks if task.effective_status == TaskStatus.FAILED)

        if group.tasks:
            group.status = self.aggregate_statuses(task.effective_status for task in group.tasks)
        else:
            group.status = self.aggregate_statuses([group.raw_status])
        return group

    def _resolve_subgroup(self, subgroup: TaskSubgroup) -> None:
        failure_seen = False
        for task in subgroup.tasks:
            task.is_blocked = failure_seen
            task.effective_status = task.status
            if task.status == TaskStatus.FAILED:
                failure_seen = True

        subgroup.total_tasks = len(subgroup.tasks)
        subgroup.completed_tasks = sum(1 for task in subgroup.tasks if task.status == TaskStatus.COMPLETED)
        subgroup.failed_tasks = sum(1 for task in subgroup.tasks if task.status == TaskStatus.FAILED)
        subgroup.status = self.aggregate_statuses(task.status for task in subgroup.tasks)

    def effective_status(self, group: TaskGroup, task: ParsedTask) -> Optional[TaskStatus]:
        """Status of a depth-2 task as used for counting and aggregation."""
        subgroup = group.subgroup_for(task.task_id)
        if subgroup is None or not subgroup.tasks:
            return task.status
        return self.to_task_status(self.aggregate_statuses(child.status for child in subgroup.tasks))

    def find_next_executable_task(self, group: TaskGroup) -> Optional[ParsedTask]:
        """First unblocked not_started leaf, else the first unblocked queued leaf."""
        first_queued: Optional[ParsedTask] = None
        for task in group.leaf_tasks():
            if task.is_blocked:
                continue
            if task.status == TaskStatus.NOT_STARTED:
                return task
            if task.status == TaskStatus.QUEUED and first_queued is None:
                first_queued = task
        return first_queued

    def blocked_tasks(self, group: TaskGroup) -> List[ParsedTask]:
        return [task for subgroup in group.subgroups for task in subgroup.tasks if task.is_blocked]

    @staticmethod
    def find_group(groups: Sequence[TaskGroup], group_id: str) -> Optional[TaskGroup]:
        for group in groups:
            if group.group_id == group_id:
                return group
        return None

    def summarize_group(self, group: TaskGroup) -> Dict[str, Any]:
        """Compact progress report for a single group."""
        next_task = self.find_next_executable_task(group)
        return {
            "group_id": group.group_id,
            "description": group.description,
            "status": group.status.value,
            "total_tasks": group.total_tasks,
            "completed_tasks": group.completed_tasks,
            "failed_tasks": group.failed_tasks,
            "next_task": next_task.task_id if next_task else None,
            "blocked_tasks": [task.task_id for task in self.blocked_tasks(group)],
            "subgroups": [
                {
                    "subgroup_id": subgroup.subgroup_id,
                    "status": subgroup.status.value,
                    "total_tasks": subgroup.total_tasks,
                    "completed_tasks": subgroup.completed_tasks,
                    "failed_tasks": subgroup.failed_tasks,
                }
                for subgroup in group.subgroups
            ],
        }

    # ------------------------------------------------------------------
    # Requirement traceability
    # ------------------------------------------------------------------

    @staticmethod
    def extract_requirement_ids(requirements_text: str) -> List[str]:
        """Read requirement ids from a requirements document.

        ``### Requirement 3`` contributes ``3`` and each numbered acceptance
        criterion below it (``1. WHEN ...``) contributes ``3.1``, ``3.2`` and
        so on. Criteria are collected until the next heading at the same or a
        shallower level than the requirement heading.
        """
        ids: List[str] = []
        current: Optional[str] = None
        current_level = 0

        for line in requirements_text.splitlines():
            heading = REQUIREMENT_HEADING_PATTERN.match(line)
            if heading:
                current = heading.group("number")
                current_level = len(HEADING_PATTERN.match(line).group("level"))
                if current not in ids:
                    ids.append(current)
                continue

            other_heading = HEADING_PATTERN.match(line)
            if other_heading:
                if len(other_heading.group("level")) <= current_level:
                    current = None
                    current_level = 0
                continue

            if current is None:
                continue
            criterion = CRITERION_PATTERN.match(line)
            if criterion:
                ref = f"{current}.{criterion.group('number')}"
                if ref not in ids:
                    ids.append(ref)

        return ids

    def validate_requirements(self, group: TaskGroup, known_ids: Iterable[str]) -> RequirementsValidation:
        """Check that every requirement a group's tasks reference actually exists."""
        known = set(known_ids)
        referenced = set(group.requirements)
        for task in group.iter_tasks():
            referenced.update(task.requirements)

        ordered = sorted(referenced, key=_requirement_sort_key)
        validation = RequirementsValidation(
            group_id=group.group_id,
            referenced=ordered,
            missing=[ref for ref in ordered if ref not in known],
            tasks_without_requirements=[task.task_id for task in group.leaf_tasks() if not task.requirements],
        )
        if validation.missing:
            logger.warning(f"Group {group.group_id} references unknown requirements: {', '.join(validation.missing)}")
        return validation
