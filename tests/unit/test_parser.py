"""Unit tests for task document parsing.

This module tests line recognition, requirement annotations and the
assembly of groups and subgroups from a flat task list.
"""

import logging

import pytest

from tasktrack.parser import (
    IndentLevels,
    build_hierarchy,
    indent_width,
    parse_requirements_line,
    parse_task_line,
    parse_tasks,
)
from tasktrack.status import TaskStatus


class TestParseTaskLine:
    """Test cases for single task line recognition."""

    def test_basic_line(self):
        """A top-level line yields id, marker, description and indent width."""
        line = parse_task_line("- [x] 1 Initial setup")

        assert line is not None
        assert line.task_id == "1"
        assert line.marker == "x"
        assert line.status == TaskStatus.COMPLETED
        assert line.description == "Initial setup"
        assert line.width == 0
        assert line.optional is False

    def test_trailing_dot_not_part_of_id(self):
        """`1. Initial setup` has id 1."""
        line = parse_task_line("- [ ] 1. Initial setup")
        assert line.task_id == "1"
        assert line.description == "Initial setup"

    def test_dotted_id_with_trailing_dot(self):
        line = parse_task_line("    - [-] 2.3.1. Write tests")
        assert line.task_id == "2.3.1"
        assert line.width == 4
        assert line.status == TaskStatus.IN_PROGRESS

    def test_optional_flag(self):
        """A `*` directly after the checkbox marks the task optional."""
        line = parse_task_line("  - [ ]* 1.2 Extra docs")
        assert line.optional is True
        assert line.task_id == "1.2"
        assert line.width == 2

    def test_empty_label(self):
        line = parse_task_line("- [~] 4")
        assert line.task_id == "4"
        assert line.description == ""
        assert line.status == TaskStatus.QUEUED

    def test_unrecognised_marker_still_a_task(self):
        """Any single character is captured; validity is decided separately."""
        line = parse_task_line("  - [?] 1.1 Mystery")
        assert line is not None
        assert line.marker == "?"
        assert line.status is None

    def test_marker_offset_points_at_marker(self):
        text = "    - [ ] 1.1.1 Leaf"
        line = parse_task_line(text)
        assert text[line.marker_offset] == " "
        assert text[line.marker_offset - 1] == "["
        assert text[line.marker_offset + 1] == "]"

    def test_crlf_stripped(self):
        line = parse_task_line("- [x] 1 Group\r\n")
        assert line.description == "Group"

    @pytest.mark.parametrize("text", [
        "Just some prose",
        "- [x] Task without id",
        "- [] 1 Empty checkbox",
        "* [x] 1 Wrong bullet",
        "## 1 Heading",
        "",
    ])
    def test_non_task_lines(self, text):
        """Lines outside the checkbox grammar are ignored."""
        assert parse_task_line(text) is None


class TestIndentLevels:
    """Test cases for width and depth computation."""

    @pytest.mark.parametrize("indent,width", [
        ("", 0),
        ("  ", 2),
        ("    ", 4),
        ("\t", 4),
        ("\t\t", 8),
    ])
    def test_width(self, indent, width):
        assert indent_width(indent) == width

    @pytest.mark.parametrize("widths,depths", [
        ([0, 2, 4, 4, 2], [1, 2, 3, 3, 2]),
        ([0, 4, 8, 8, 4], [1, 2, 3, 3, 2]),
        ([0, 4, 8, 0, 4], [1, 2, 3, 1, 2]),
        ([0, 2, 4, 6], [1, 2, 3, 4]),
        ([0, 4, 8, 6], [1, 2, 3, 3]),
    ])
    def test_depth_relative_to_enclosing_lines(self, widths, depths):
        """Any deeper indent opens exactly one more level."""
        levels = IndentLevels()
        assert [levels.depth(width) for width in widths] == depths

    def test_first_indented_line_is_nested(self):
        """Column 0 is the top level even before any line sits there."""
        assert IndentLevels().depth(2) == 2


class TestParseRequirementsLine:
    """Test cases for requirement annotation lines."""

    def test_underscore_delimited(self):
        assert parse_requirements_line("    - _Requirements: 1.1, 2.3_") == ["1.1", "2.3"]

    def test_asterisk_delimited(self):
        assert parse_requirements_line("- *Requirements: 4.2*") == ["4.2"]

    def test_backticks_stripped(self):
        assert parse_requirements_line("  - _Requirements: `1.1`, `1.2`_") == ["1.1", "1.2"]

    def test_duplicates_kept_in_order(self):
        assert parse_requirements_line("- _Requirements: 2.1, 1.1, 2.1_") == ["2.1", "1.1", "2.1"]

    def test_empty_entries_dropped(self):
        assert parse_requirements_line("- _Requirements: 1.1, , 1.2,_") == ["1.1", "1.2"]

    def test_not_an_annotation(self):
        assert parse_requirements_line("- Requirements: 1.1") is None
        assert parse_requirements_line("- _Notes: 1.1_") is None


class TestParseTasks:
    """Test cases for parse_tasks."""

    def test_requirements_attach_to_preceding_task(self):
        """A task followed by `_Requirements: a.b, c.d_` has both ids."""
        content = (
            "- [ ] 1 Group\n"
            "  - [ ] 1.1 Sub\n"
            "    - [ ] 1.1.1 Leaf\n"
            "    - _Requirements: 1.2, 3.4_\n"
        )
        tasks = parse_tasks(content)

        assert [t.task_id for t in tasks] == ["1", "1.1", "1.1.1"]
        assert tasks[2].requirements == ["1.2", "3.4"]
        assert tasks[1].requirements == []

    def test_blank_line_breaks_association(self):
        content = "- [ ] 1 Group\n\n- _Requirements: 1.1_\n"
        tasks = parse_tasks(content)
        assert tasks[0].requirements == []

    def test_line_indexes(self):
        content = "# Tasks\n\n- [ ] 1 Group\n  - [x] 1.1 Done\n"
        tasks = parse_tasks(content)
        assert [t.line_index for t in tasks] == [2, 3]

    def test_unparseable_marker_kept(self):
        tasks = parse_tasks("- [ ] 1 Group\n  - [?] 1.1 Odd\n")
        assert tasks[1].status is None
        assert tasks[1].marker == "?"
        assert tasks[1].has_valid_status is False


class TestBuildHierarchy:
    """Test cases for build_hierarchy."""

    def test_groups_and_subgroups(self):
        content = (
            "- [ ] 1 First\n"
            "  - [x] 1.1 Leaf task\n"
            "  - [ ] 1.2 Parent\n"
            "    - [x] 1.2.1 Child A\n"
            "    - [ ] 1.2.2 Child B\n"
            "- [ ] 2 Second\n"
            "  - [ ] 2.1 Only\n"
        )
        groups = build_hierarchy(parse_tasks(content))

        assert [g.group_id for g in groups] == ["1", "2"]
        first = groups[0]
        assert [t.task_id for t in first.tasks] == ["1.1", "1.2"]
        assert len(first.subgroups) == 1
        assert first.subgroups[0].subgroup_id == "1.2"
        assert [t.task_id for t in first.subgroups[0].tasks] == ["1.2.1", "1.2.2"]
        assert first.subgroup_for("1.1") is None
        assert groups[1].subgroups == []

    def test_group_requirements_copied(self):
        content = "- [ ] 1 Group\n  - _Requirements: 5.1_\n"
        groups = build_hierarchy(parse_tasks(content))
        assert groups[0].requirements == ["5.1"]

    def test_orphans_skipped(self, caplog):
        """Depth-2 before any group and depth-3 before any depth-2 are dropped with a warning."""
        content = (
            "  - [ ] 0.1 Orphan subtask\n"
            "    - [ ] 0.1.1 Orphan leaf\n"
            "- [ ] 1 Group\n"
            "  - [ ] 1.1 Sub\n"
        )
        with caplog.at_level(logging.WARNING, logger="tasktrack.parser"):
            groups = build_hierarchy(parse_tasks(content))

        assert len(groups) == 1
        assert [t.task_id for t in groups[0].tasks] == ["1.1"]
        assert groups[0].subgroups == []
        assert "Skipping task 0.1 on line 1" in caplog.text
        assert "Skipping task 0.1.1 on line 2" in caplog.text

    def test_four_space_nesting(self):
        """A document nested four spaces per level keeps every task."""
        content = (
            "- [ ] 1 Group\n"
            "    - [ ] 1.1 Sub\n"
            "        - [!] 1.1.1 A\n"
            "        - [ ] 1.1.2 B\n"
            "    - [x] 1.2 Leaf\n"
        )
        groups = build_hierarchy(parse_tasks(content))

        group = groups[0]
        assert [t.task_id for t in group.tasks] == ["1.1", "1.2"]
        assert [t.task_id for t in group.subgroups[0].tasks] == ["1.1.1", "1.1.2"]
        assert group.subgroups[0].tasks[0].status == TaskStatus.FAILED

    def test_tab_nesting(self):
        """A document nested one tab per level keeps every task."""
        content = "- [ ] 1 Group\n\t- [ ] 1.1 A\n\t\t- [~] 1.1.1 Leaf\n\t- [x] 1.2 B\n"
        tasks = parse_tasks(content)

        assert [t.depth for t in tasks] == [1, 2, 3, 2]
        groups = build_hierarchy(tasks)
        assert [t.task_id for t in groups[0].tasks] == ["1.1", "1.2"]
        assert groups[0].subgroups[0].subgroup_id == "1.1"

    def test_id_nesting_mismatch_warned(self, caplog):
        """Indentation decides placement; a disagreeing dotted id is only reported."""
        content = "- [ ] 1 Group\n  - [ ] 2.1 Misplaced\n"
        with caplog.at_level(logging.WARNING, logger="tasktrack.parser"):
            groups = build_hierarchy(parse_tasks(content))

        assert [t.task_id for t in groups[0].tasks] == ["2.1"]
        assert "suggests parent 2" in caplog.text

    def test_too_deep_skipped(self):
        content = (
            "- [ ] 1 Group\n"
            "  - [ ] 1.1 Sub\n"
            "    - [ ] 1.1.1 Leaf\n"
            "      - [ ] 1.1.1.1 Too deep\n"
        )
        groups = build_hierarchy(parse_tasks(content))
        assert [t.task_id for t in groups[0].subgroups[0].tasks] == ["1.1.1"]

    def test_empty_document(self):
        assert build_hierarchy(parse_tasks("")) == []
