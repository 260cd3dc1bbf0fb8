"""Post-operation verification of task documents.

The verifier re-reads a tasks document on its own, without the resolver, and
reports a list of named checks. It is meant to be run after a status write to
detect drift between what a caller believes and what the document says.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, List, Union

from .errors import TaskStorageError
from .models import VerificationCheck
from .parser import iter_task_lines
from .status import TaskStatus, coerce_status, is_valid_marker
from .workspace import Workspace

logger = logging.getLogger("tasktrack.verification")


class TaskVerifier:
    """Check a task's recorded status against an expected value."""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    def verify_task_status(self, spec_name: str, task_id: str,
                           expected: Union[TaskStatus, str]) -> List[VerificationCheck]:
        expected_status = coerce_status(expected)
        path = self.workspace.tasks_path(spec_name)
        checks: List[VerificationCheck] = []

        try:
            content = self.workspace.tracker.read_document(path)
        except TaskStorageError as e:
            checks.append(VerificationCheck("tasks.md readable", False, f"Cannot read {path}: {e}"))
            return checks
        checks.append(VerificationCheck("tasks.md readable", True, f"Read {path}"))

        task_lines = [task_line for _, task_line in iter_task_lines(content) if task_line is not None]
        matching = [task_line for task_line in task_lines if task_line.task_id == task_id]

        if not matching:
            checks.append(VerificationCheck(f"Task {task_id} exists", False, f"Task {task_id} not found in {path}"))
        else:
            target = matching[0]
            checks.append(VerificationCheck(
                f"Task {task_id} exists", True, f"Task {task_id} found on line {target.line_index + 1}",
            ))
            actual = target.status
            actual_name = actual.value if actual is not None else f"unrecognised marker {target.marker!r}"
            if actual == expected_status:
                checks.append(VerificationCheck(
                    f"Task {task_id} status", True, f"Task {task_id} is {expected_status.value}",
                ))
            else:
                logger.warning(f"Status drift for task {task_id}: expected {expected_status.value}, found {actual_name}")
                checks.append(VerificationCheck(
                    f"Task {task_id} status",
                    False,
                    f"Drift detected: expected {expected_status.value}, found {actual_name}",
                    expected=expected_status.value,
                    actual=actual_name,
                ))

        checks.append(self._integrity_check(task_lines))
        return checks

    @staticmethod
    def _integrity_check(task_lines) -> VerificationCheck:
        duplicates = sorted(task_id for task_id, count in Counter(t.task_id for t in task_lines).items() if count > 1)
        invalid = [t for t in task_lines if not is_valid_marker(t.marker)]

        problems = []
        if duplicates:
            problems.append(f"duplicate task ids: {', '.join(duplicates)}")
        if invalid:
            problems.append("invalid markers on lines " + ", ".join(str(t.line_index + 1) for t in invalid))
        if problems:
            return VerificationCheck("Content integrity", False, "; ".join(problems))
        return VerificationCheck("Content integrity", True, f"{len(task_lines)} task line(s) well-formed")

    @staticmethod
    def report(checks: List[VerificationCheck]) -> Dict[str, Any]:
        """Summarize a list of checks for serialization."""
        return {
            "passed": all(check.passed for check in checks),
            "failed_checks": [check.name for check in checks if not check.passed],
            "checks": [check.to_dict() for check in checks],
        }
