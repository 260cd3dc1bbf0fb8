"""Task status values and their checkbox markers.

A task's life-cycle state is stored in the document as the single character
between the square brackets of its checkbox (``- [x] 1.1 ...``). This module
owns that mapping in both directions.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Union

from .errors import InvalidStatusError


class TaskStatus(str, Enum):
    """Life-cycle state of a single task."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    QUEUED = "queued"


class TaskGroupStatus(str, Enum):
    """Derived status of a group or subgroup."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    QUEUED = "queued"
    PARTIAL = "partial"


STATUS_TO_CHAR: Dict[TaskStatus, str] = {
    TaskStatus.NOT_STARTED: " ",
    TaskStatus.IN_PROGRESS: "-",
    TaskStatus.COMPLETED: "x",
    TaskStatus.FAILED: "!",
    TaskStatus.QUEUED: "~",
}

CHAR_TO_STATUS: Dict[str, TaskStatus] = {char: status for status, char in STATUS_TO_CHAR.items()}


def coerce_status(value: Union[TaskStatus, str]) -> TaskStatus:
    """Return ``value`` as a TaskStatus, accepting the plain string names."""
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(value)
    except ValueError:
        valid = ", ".join(status.value for status in TaskStatus)
        raise InvalidStatusError(f"Unknown task status '{value}'. Expected one of: {valid}") from None


def status_to_char(status: Union[TaskStatus, str]) -> str:
    """Return the checkbox marker for a status."""
    return STATUS_TO_CHAR[coerce_status(status)]


def char_to_status(char: str) -> TaskStatus:
    """Return the status for a checkbox marker.

    Raises InvalidStatusError for anything other than the five markers.
    """
    try:
        return CHAR_TO_STATUS[char]
    except KeyError:
        raise InvalidStatusError(f"Invalid status marker {char!r}") from None


def is_valid_marker(char: str) -> bool:
    return char in CHAR_TO_STATUS
