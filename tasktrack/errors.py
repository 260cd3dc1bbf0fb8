"""Exception types raised by the tasktrack engine.

Every exception carries an ``ErrorCode`` in ``.code`` so that outer layers
(the workspace and the MCP server) can report failures in a structured way
without inspecting message text.
"""

from __future__ import annotations

from typing import Optional


class ErrorCode:
    """String constants identifying failure categories."""

    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"
    SPEC_NOT_FOUND = "SPEC_NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_SPEC_NAME = "INVALID_SPEC_NAME"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    STORAGE_ERROR = "STORAGE_ERROR"


class TaskTrackError(Exception):
    """Base class for all engine errors."""

    code: str = ErrorCode.INVALID_ARGUMENT

    def __init__(self, message: str, *, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class TaskNotFoundError(TaskTrackError, ValueError):
    """A referenced task or group identifier has no matching line."""

    code = ErrorCode.TASK_NOT_FOUND


class SpecNotFoundError(TaskTrackError, FileNotFoundError):
    """The spec directory or one of its documents does not exist."""

    code = ErrorCode.SPEC_NOT_FOUND


class InvalidStatusError(TaskTrackError, ValueError):
    """A status name or status marker character is not recognised."""

    code = ErrorCode.INVALID_STATUS


class TaskStorageError(TaskTrackError, RuntimeError):
    """The task document could not be read or written."""

    code = ErrorCode.STORAGE_ERROR


class InvalidArgumentError(TaskTrackError, ValueError):
    """A caller-supplied argument (empty id, malformed spec name) was rejected."""

    code = ErrorCode.INVALID_ARGUMENT
