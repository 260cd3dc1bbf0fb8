"""MCP server exposing tasktrack task lifecycle tools."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from tasktrack import (
    TaskGroupResolver,
    TaskTrackError,
    TaskVerifier,
    Workspace,
)
from tasktrack.tasktrack_logging import setup_logging

mcp = FastMCP("tasktrack")

PROJECT_ROOT_ENV = "TASKTRACK_PROJECT_ROOT"


def _specs_dir_name() -> str:
    return os.getenv(Workspace.SPECS_DIR_ENV, Workspace.DEFAULT_SPECS_DIR)


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_workspace_root() -> Optional[Path]:
    specs_dir = _specs_dir_name()
    for base in _candidate_bases():
        if (base / specs_dir).is_dir():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_workspace_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _workspace(root: Optional[str]) -> Workspace:
    return Workspace(_resolve_root(root))


def _workspace_optional(root: Optional[str]) -> Optional[Workspace]:
    try:
        return _workspace(root)
    except ValueError:
        return None


def _error_response(error: TaskTrackError, **context: Any) -> Dict[str, Any]:
    return {"error": str(error), "code": error.code, **context}


@mcp.tool()
def list_task_groups(spec_name: str, root: Optional[str] = None) -> Dict[str, Any]:
    """List every task group of a spec with its derived status, counts and next task."""

    workspace = _workspace(root)
    try:
        groups = workspace.list_groups(spec_name)
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name)
    return {
        "spec_name": spec_name,
        "tasks_path": str(workspace.tasks_path(spec_name)),
        "groups": groups,
    }


@mcp.tool()
def task_group_status(spec_name: str, group_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the full status tree of one task group, including blocked tasks."""

    workspace = _workspace(root)
    try:
        return {"spec_name": spec_name, "group": workspace.group_status(spec_name, group_id)}
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name, group_id=group_id)


@mcp.tool()
def next_task(spec_name: str, group_id: Optional[str] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Retrieve the next executable task, skipping tasks blocked by an earlier failure."""

    workspace = _workspace(root)
    try:
        found = workspace.next_task(spec_name, group_id)
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name, group_id=group_id)
    if found is None:
        return {
            "spec_name": spec_name,
            "group_id": group_id,
            "task": None,
            "message": "No executable tasks remain.",
        }
    return {"spec_name": spec_name, **found}


@mcp.tool()
def update_task_status(
    spec_name: str,
    task_id: str,
    status: str,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Set a task's status (not_started, in_progress, completed, failed or queued)."""

    workspace = _workspace(root)
    try:
        update = workspace.update_task_status(spec_name, task_id, status)
        group = TaskGroupResolver.find_group(workspace.load_groups(spec_name), task_id.split(".", 1)[0])
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name, task_id=task_id)
    return {
        "spec_name": spec_name,
        "update": update.to_dict(),
        "group_status": group.status.value if group else None,
    }


@mcp.tool()
def queue_group(spec_name: str, group_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Queue every not-started task of a group for execution."""

    workspace = _workspace(root)
    try:
        queued = workspace.queue_group(spec_name, group_id)
        next_item = workspace.next_task(spec_name, group_id)
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name, group_id=group_id)
    return {
        "spec_name": spec_name,
        "group_id": group_id,
        "queued_tasks": queued,
        "next_task": next_item["task"] if next_item else None,
        "message": f"Queued {len(queued)} task(s).",
    }


@mcp.tool()
def report_task_failure(spec_name: str, group_id: str, task_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Mark a task and its group failed and return later queued tasks to not started."""

    workspace = _workspace(root)
    try:
        changed = workspace.report_failure(spec_name, group_id, task_id)
        status = workspace.group_status(spec_name, group_id)
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name, group_id=group_id, task_id=task_id)
    return {
        "spec_name": spec_name,
        "group_id": group_id,
        "failed_task": task_id,
        "changed_tasks": changed,
        "blocked_tasks": status["blocked_tasks"],
        "group_status": status["status"],
    }


@mcp.tool()
def verify_task_status(spec_name: str, task_id: str, expected_status: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Re-read tasks.md and check that a task's recorded status matches the expected one."""

    workspace = _workspace(root)
    try:
        checks = TaskVerifier(workspace).verify_task_status(spec_name, task_id, expected_status)
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name, task_id=task_id)
    return {"spec_name": spec_name, "task_id": task_id, **TaskVerifier.report(checks)}


@mcp.tool()
def validate_group_requirements(spec_name: str, group_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Check that the requirement ids referenced by a group exist in requirements.md."""

    workspace = _workspace(root)
    try:
        validation = workspace.validate_requirements(spec_name, group_id)
    except TaskTrackError as e:
        return _error_response(e, spec_name=spec_name, group_id=group_id)
    return {"spec_name": spec_name, **validation.to_dict()}


@mcp.resource("tasktrack://specs")
def resource_specs() -> str:
    """Resource view listing the specs and their task group progress."""

    workspace = _workspace_optional(None)
    if not workspace:
        return f"No project root detected. Launch tools with a 'root' argument or set {PROJECT_ROOT_ENV}."

    specs = workspace.list_specs()
    if not specs:
        return f"No specs found under {workspace.specs_dir}."

    lines = ["tasktrack Specs"]
    for spec in specs:
        lines.append("")
        lines.append(f"- {spec['spec_name']}")
        if not spec.get("tasks_path"):
            lines.append("  Tasks: none")
            continue
        lines.append(f"  Tasks: {spec['tasks_path']}")
        try:
            groups = workspace.list_groups(spec["spec_name"])
        except TaskTrackError as e:
            lines.append(f"  Error: {e}")
            continue
        for group in groups:
            lines.append(
                f"  [{group['status']}] {group['group_id']} {group['description']} "
                f"({group['completed_tasks']}/{group['total_tasks']} completed)"
            )

    return "\n".join(lines)


if __name__ == "__main__":
    setup_logging()
    mcp.run(transport="stdio")
