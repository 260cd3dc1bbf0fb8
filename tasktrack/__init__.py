"""tasktrack - task hierarchy parsing and status lifecycle engine."""

from .errors import (
    ErrorCode,
    InvalidArgumentError,
    InvalidStatusError,
    SpecNotFoundError,
    TaskNotFoundError,
    TaskStorageError,
    TaskTrackError,
)
from .models import (
    ParsedTask,
    RequirementsValidation,
    TaskGroup,
    TaskSubgroup,
    TaskUpdate,
    VerificationCheck,
)
from .resolver import TaskGroupResolver
from .status import TaskGroupStatus, TaskStatus, char_to_status, status_to_char
from .tracker import TaskTracker
from .verification import TaskVerifier
from .workspace import Workspace

__all__ = [
    "ErrorCode",
    "InvalidArgumentError",
    "InvalidStatusError",
    "SpecNotFoundError",
    "TaskNotFoundError",
    "TaskStorageError",
    "TaskTrackError",
    "ParsedTask",
    "RequirementsValidation",
    "TaskGroup",
    "TaskSubgroup",
    "TaskUpdate",
    "VerificationCheck",
    "TaskGroupResolver",
    "TaskGroupStatus",
    "TaskStatus",
    "char_to_status",
    "status_to_char",
    "TaskTracker",
    "TaskVerifier",
    "Workspace",
]
