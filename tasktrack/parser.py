"""Task document parsing.

A task document is Markdown with nested checkbox entries::

    - [ ] 1 Group
      - [x] 1.1 Subgroup
        - [!] 1.1.1 Leaf
        - _Requirements: 2.1, 2.3_

Only lines matching the checkbox grammar are significant; everything else is
ignored. Parsing happens in two steps: ``parse_tasks`` turns the text into a
flat, document-ordered list of ``ParsedTask`` records with their requirement
annotations attached, and ``build_hierarchy`` folds that list into groups and
subgroups. Status aggregation is left to the resolver.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from .errors import InvalidStatusError
from .models import ParsedTask, TaskGroup, TaskSubgroup
from .status import TaskStatus, char_to_status

logger = logging.getLogger("tasktrack.parser")

TASK_LINE_PATTERN = re.compile(
    r"^(?P<indent>[ \t]*)-[ \t]+\[(?P<mark>.)\](?P<optional>\*)?\s+"
    r"(?P<task_id>\d+(?:\.\d+)*)\.?(?:\s+(?P<description>.*?))?\s*$"
)
REQUIREMENTS_LINE_PATTERN = re.compile(
    r"^\s*-\s+(?P<delim>[_*])Requirements:\s*(?P<refs>.*?)(?P=delim)\s*$"
)

TAB_SIZE = 4
MAX_DEPTH = 3


@dataclass(slots=True)
class TaskLine:
    """One checkbox line, located precisely enough to rewrite its marker."""

    line_index: int
    indent: str
    width: int  # indent width in columns, tabs expanded
    marker: str
    marker_offset: int  # column of the marker character within the line
    optional: bool
    task_id: str
    description: str

    @property
    def status(self) -> Optional[TaskStatus]:
        try:
            return char_to_status(self.marker)
        except InvalidStatusError:
            return None


def indent_width(indent: str) -> int:
    """Column width of a run of leading whitespace (tabs count as four columns)."""
    return len(indent.expandtabs(TAB_SIZE))


class IndentLevels:
    """Assign nesting depths from indent widths relative to the enclosing lines.

    Column 0 is depth 1. A line indented further than the line above opens the
    next level whatever the step size (two spaces, four spaces, a tab); a line
    indented less closes every level deeper than its own width.
    """

    def __init__(self):
        self._widths = [0]

    def depth(self, width: int) -> int:
        while self._widths[-1] > width:
            self._widths.pop()
        if self._widths[-1] < width:
            self._widths.append(width)
        return len(self._widths)


def parse_task_line(line: str, line_index: int = -1) -> Optional[TaskLine]:
    """Recognise a checkbox task line, or return None."""
    match = TASK_LINE_PATTERN.match(line.rstrip("\r\n"))
    if not match:
        return None
    indent = match.group("indent")
    return TaskLine(
        line_index=line_index,
        indent=indent,
        width=indent_width(indent),
        marker=match.group("mark"),
        marker_offset=match.start("mark"),
        optional=match.group("optional") is not None,
        task_id=match.group("task_id"),
        description=(match.group("description") or "").strip(),
    )


def parse_requirements_line(line: str) -> Optional[List[str]]:
    """Return the requirement ids of a ``- _Requirements: ..._`` line, or None.

    Identifiers are kept verbatim and in order (duplicates included); wrapping
    backticks are stripped and empty entries dropped.
    """
    match = REQUIREMENTS_LINE_PATTERN.match(line.rstrip("\r\n"))
    if not match:
        return None
    refs = []
    for raw in match.group("refs").split(","):
        ref = raw.strip().strip("`").strip()
        if ref:
            refs.append(ref)
    return refs


def iter_task_lines(content: str) -> Iterator[Tuple[str, Optional[TaskLine]]]:
    """Yield every physical line (line ending kept) with its parsed task, if any."""
    for index, line in enumerate(content.splitlines(keepends=True)):
        yield line, parse_task_line(line, index)


def parse_tasks(content: str) -> List[ParsedTask]:
    """Parse every task line of a document into a flat list in document order.

    Depth comes from each line's indentation relative to the task lines above
    it (see ``IndentLevels``). A requirements annotation attaches to the task
    on the line directly above it; any other line in between breaks the
    association.
    """
    tasks: List[ParsedTask] = []
    previous: Optional[ParsedTask] = None
    levels = IndentLevels()

    for line, task_line in iter_task_lines(content):
        if task_line is not None:
            previous = ParsedTask(
                task_id=task_line.task_id,
                depth=levels.depth(task_line.width),
                description=task_line.description,
                status=task_line.status,
                marker=task_line.marker,
                optional=task_line.optional,
                line_index=task_line.line_index,
            )
            if not previous.has_valid_status:
                logger.debug(
                    f"Unrecognised status marker {task_line.marker!r} for task {task_line.task_id} "
                    f"on line {task_line.line_index + 1}"
                )
            tasks.append(previous)
            continue

        if previous is not None:
            refs = parse_requirements_line(line)
            if refs is not None:
                previous.requirements.extend(refs)
        previous = None

    return tasks


def _check_parent(task: ParsedTask, enclosing_id: str) -> None:
    if task.parent_id != enclosing_id:
        logger.warning(
            f"Task {task.task_id} on line {task.line_index + 1} is nested under {enclosing_id}; "
            f"its id suggests parent {task.parent_id}"
        )


def build_hierarchy(tasks: List[ParsedTask]) -> List[TaskGroup]:
    """Fold a flat task list into groups and subgroups.

    Depth-2 entries go into their group's ``tasks``; a depth-2 entry gains a
    ``TaskSubgroup`` once its first depth-3 child appears. Entries that cannot
    be attached are skipped with a warning, and entries whose dotted id does
    not match their nesting are kept where the indentation puts them.
    """
    groups: List[TaskGroup] = []
    group: Optional[TaskGroup] = None
    parent: Optional[ParsedTask] = None
    subgroup: Optional[TaskSubgroup] = None

    for task in tasks:
        if task.depth == 1:
            group = TaskGroup(
                group_id=task.task_id,
                description=task.description,
                raw_status=task.status,
                marker=task.marker,
                optional=task.optional,
                requirements=list(task.requirements),
                line_index=task.line_index,
            )
            groups.append(group)
            parent = None
            subgroup = None
        elif task.depth == 2:
            if group is None:
                logger.warning(f"Skipping task {task.task_id} on line {task.line_index + 1}: no enclosing group")
                continue
            _check_parent(task, group.group_id)
            group.tasks.append(task)
            parent = task
            subgroup = None
        elif task.depth == 3:
            if parent is None:
                logger.warning(f"Skipping task {task.task_id} on line {task.line_index + 1}: no enclosing subgroup")
                continue
            _check_parent(task, parent.task_id)
            if subgroup is None:
                subgroup = TaskSubgroup(
                    subgroup_id=parent.task_id,
                    description=parent.description,
                    raw_status=parent.status,
                    marker=parent.marker,
                    optional=parent.optional,
                )
                group.subgroups.append(subgroup)
            subgroup.tasks.append(task)
        else:
            logger.warning(
                f"Skipping task {task.task_id} on line {task.line_index + 1}: depth {task.depth} exceeds {MAX_DEPTH}"
            )

    return groups
