"""Status transitions on task documents.

Every transition is a line-level text edit: only the marker character inside
the checkbox of the targeted lines changes, and every other byte of the
document (line endings, trailing whitespace, a missing final newline) is
preserved. Documents are always read and written as a whole; writes go to a
temporary file beside the target and are moved into place atomically.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import ErrorCode, TaskNotFoundError, TaskStorageError, TaskTrackError
from .models import TaskGroup, TaskUpdate
from .parser import TaskLine, parse_task_line
from .resolver import TaskGroupResolver
from .status import TaskStatus, char_to_status, coerce_status, status_to_char
from .tasktrack_logging import log_operation, log_performance

logger = logging.getLogger("tasktrack.tracker")

NO_EXECUTOR_ERROR = "No executor found"

Executor = Callable[[], Any]


async def _settle(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class TaskTracker:
    """Apply status transitions to a task document."""

    def __init__(self, resolver: Optional[TaskGroupResolver] = None):
        self.resolver = resolver or TaskGroupResolver()

    status_to_char = staticmethod(status_to_char)
    char_to_status = staticmethod(char_to_status)

    # ------------------------------------------------------------------
    # Text operations
    # ------------------------------------------------------------------

    @staticmethod
    def _locate(lines: List[str], task_id: str) -> Optional[TaskLine]:
        found: Optional[TaskLine] = None
        for index, line in enumerate(lines):
            task_line = parse_task_line(line, index)
            if task_line is None or task_line.task_id != task_id:
                continue
            if found is None:
                found = task_line
            else:
                logger.warning(
                    f"Task id {task_id} appears more than once (lines {found.line_index + 1} and "
                    f"{index + 1}); using the first occurrence"
                )
                break
        return found

    def parse_task_status(self, content: str, task_id: str) -> Optional[TaskStatus]:
        """Read one task's status without building the hierarchy.

        Returns None when the task is absent or its marker is unrecognised.
        """
        task_line = self._locate(content.splitlines(keepends=True), task_id)
        if task_line is None:
            return None
        return task_line.status

    def replace_task_status(self, content: str, task_id: str, new_status: Union[TaskStatus, str]) -> str:
        """Return ``content`` with the marker of ``task_id`` set to ``new_status``."""
        marker = status_to_char(new_status)
        lines = content.splitlines(keepends=True)
        task_line = self._locate(lines, task_id)
        if task_line is None:
            raise TaskNotFoundError(f"Task '{task_id}' not found")
        self._set_marker(lines, task_line, marker)
        return "".join(lines)

    def _rewrite_markers(self, content: str, changes: Mapping[int, TaskStatus]) -> str:
        """Apply marker changes keyed by 0-based line index."""
        lines = content.splitlines(keepends=True)
        for line_index, status in changes.items():
            task_line = parse_task_line(lines[line_index], line_index)
            if task_line is None:
                raise TaskNotFoundError(f"Line {line_index + 1} is not a task line")
            self._set_marker(lines, task_line, status_to_char(status))
        return "".join(lines)

    @staticmethod
    def _set_marker(lines: List[str], task_line: TaskLine, marker: str) -> None:
        line = lines[task_line.line_index]
        offset = task_line.marker_offset
        lines[task_line.line_index] = line[:offset] + marker + line[offset + 1:]

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def read_document(self, path: Union[Path, str]) -> str:
        """Read a task document exactly as stored."""
        try:
            with open(path, "r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError) as e:
            raise TaskStorageError(f"Could not read task document {path}: {e}") from e

    def write_document(self, path: Union[Path, str], content: str) -> None:
        """Replace a task document atomically."""
        path = Path(path)
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        except OSError as e:
            raise TaskStorageError(f"Could not write task document {path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(content)
            if path.exists():
                os.chmod(tmp_name, path.stat().st_mode & 0o777)
            os.replace(tmp_name, path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise TaskStorageError(f"Could not write task document {path}: {e}") from e

    def _load_group(self, content: str, group_id: str) -> TaskGroup:
        group = self.resolver.find_group(self.resolver.parse_groups(content), group_id)
        if group is None:
            raise TaskNotFoundError(f"Task group '{group_id}' not found", code=ErrorCode.GROUP_NOT_FOUND)
        return group

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @log_performance("update_task_status")
    def update_task_status(self, path: Union[Path, str], task_id: str,
                           new_status: Union[TaskStatus, str]) -> TaskUpdate:
        """Set one task's status in the document at ``path``."""
        status = coerce_status(new_status)
        with log_operation("update_task_status", path=str(path), task_id=task_id, new_status=status.value):
            content = self.read_document(path)
            previous = self.parse_task_status(content, task_id)
            updated = self.replace_task_status(content, task_id, status)
            if updated != content:
                self.write_document(path, updated)
            logger.info(f"Task {task_id}: {previous.value if previous else 'unknown'} -> {status.value}")
            return TaskUpdate(task_id=task_id, previous_status=previous, new_status=status)

    @log_performance("queue_group_tasks")
    def queue_group_tasks(self, path: Union[Path, str], group_id: str) -> List[str]:
        """Mark every not_started leaf of a group as queued.

        Returns the ids that changed; tasks in any other state are untouched.
        """
        with log_operation("queue_group_tasks", path=str(path), group_id=group_id):
            content = self.read_document(path)
            group = self._load_group(content, group_id)

            changes: Dict[int, TaskStatus] = {}
            queued: List[str] = []
            for task in group.leaf_tasks():
                if task.status == TaskStatus.NOT_STARTED:
                    changes[task.line_index] = TaskStatus.QUEUED
                    queued.append(task.task_id)

            if changes:
                self.write_document(path, self._rewrite_markers(content, changes))
            logger.info(f"Queued {len(queued)} task(s) in group {group_id}")
            return queued

    @log_performance("handle_task_failure")
    def handle_task_failure(self, path: Union[Path, str], group_id: str, failed_task_id: str) -> List[str]:
        """Record a task failure and roll back speculative work after it.

        The group and the failed task are marked failed, and every task of the
        group that follows the failed one and is still queued returns to
        not_started. Completed work and earlier tasks are left alone. Returns
        the ids that changed.
        """
        with log_operation("handle_task_failure", path=str(path), group_id=group_id, task_id=failed_task_id):
            content = self.read_document(path)
            group = self._load_group(content, group_id)

            failed_task = group.find_task(failed_task_id)
            if failed_task is None:
                raise TaskNotFoundError(f"Task '{failed_task_id}' not found in group '{group_id}'")
            ordered = list(group.iter_tasks())
            position = next(i for i, task in enumerate(ordered) if task is failed_task)

            changes: Dict[int, TaskStatus] = {}
            changed: List[str] = []
            if group.raw_status != TaskStatus.FAILED:
                changes[group.line_index] = TaskStatus.FAILED
                changed.append(group.group_id)

            if failed_task.status != TaskStatus.FAILED:
                changes[failed_task.line_index] = TaskStatus.FAILED
                changed.append(failed_task.task_id)

            for task in ordered[position + 1:]:
                if task.status == TaskStatus.QUEUED:
                    changes[task.line_index] = TaskStatus.NOT_STARTED
                    changed.append(task.task_id)

            if changes:
                self.write_document(path, self._rewrite_markers(content, changes))
            logger.info(f"Failure of {failed_task_id} recorded in group {group_id}; {len(changed)} task(s) changed")
            return changed

    def run_tasks(self, path: Union[Path, str], task_ids: Iterable[str],
                  executors: Mapping[str, Executor]) -> List[TaskUpdate]:
        """Run each task's executor in order, persisting every outcome before moving on.

        An executor may return an awaitable, which is run to completion on a
        fresh event loop before the outcome is written; this method must
        therefore not be called from inside a running loop. A missing
        executor, or one that raises or whose awaitable raises, marks that
        task failed. The batch always continues and returns one update per id.
        """
        results: List[TaskUpdate] = []
        for task_id in task_ids:
            status, error = self._execute(task_id, executors.get(task_id))
            results.append(self._persist_outcome(path, task_id, status, error))
        failed = sum(1 for update in results if not update.succeeded)
        logger.info(f"Ran {len(results)} task(s), {failed} failed")
        return results

    @staticmethod
    def _execute(task_id: str, executor: Optional[Executor]) -> Tuple[TaskStatus, Optional[str]]:
        if executor is None:
            logger.warning(f"No executor registered for task {task_id}")
            return TaskStatus.FAILED, NO_EXECUTOR_ERROR
        try:
            result = executor()
            if inspect.isawaitable(result):
                asyncio.run(_settle(result))
        except Exception as exc:
            logger.error(f"Executor for task {task_id} raised {type(exc).__name__}: {exc}")
            return TaskStatus.FAILED, str(exc)
        return TaskStatus.COMPLETED, None

    def _persist_outcome(self, path: Union[Path, str], task_id: str, status: TaskStatus,
                         error: Optional[str]) -> TaskUpdate:
        try:
            update = self.update_task_status(path, task_id, status)
        except TaskTrackError as e:
            logger.error(f"Could not record {status.value} for task {task_id}: {e}")
            message = f"{error}; {e}" if error else str(e)
            return TaskUpdate(task_id=task_id, previous_status=None, new_status=status, error=message)
        update.error = error
        return update
