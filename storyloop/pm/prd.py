"""
PRD store: load, select from and update prd.json.

prd.json is re-read from disk at the start of every iteration so edits made
between iterations (by the oracle or a human) are honoured. The only write
the controller makes is flipping a story's `passes` flag, done atomically.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from storyloop.lib.validate import validate, validate_file, validate_before_write, ValidationError
from storyloop.pm.models import Task, TaskList

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Project"
DEFAULT_BRANCH_NAME = "feature/agent-work"


class PrdError(Exception):
    """prd.json is missing, unreadable or inconsistent."""
    pass


def parse_prd(data: dict) -> TaskList:
    """Build a TaskList from already-validated prd.json data.

    Raises:
        PrdError: if two stories share an id
    """
    tasks = [Task.from_dict(story) for story in data.get("userStories", [])]

    seen = set()
    for task in tasks:
        if task.id in seen:
            raise PrdError(f"Duplicate story id '{task.id}' in prd.json")
        seen.add(task.id)

    return TaskList(
        name=data.get("projectName") or DEFAULT_PROJECT_NAME,
        branch=data.get("branchName") or DEFAULT_BRANCH_NAME,
        description=data.get("description", ""),
        tasks=tasks,
    )


def load_prd(prd_path: Path) -> TaskList:
    """Load and validate prd.json.

    Raises:
        PrdError: file missing, invalid JSON, schema violation or duplicate ids
    """
    try:
        data = validate_file(prd_path, "prd")
    except ValidationError as e:
        raise PrdError(str(e)) from None
    return parse_prd(data)


def select_next_task(task_list: TaskList) -> Optional[Task]:
    """First story not yet done, in file order. Priority is not consulted."""
    for task in task_list.tasks:
        if not task.done:
            return task
    return None


def write_json_atomic(path: Path, data: dict) -> None:
    """Write JSON to a temp file next to path, then rename it over path."""
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def mark_task_done(prd_path: Path, task_id: str) -> None:
    """Set passes=true for one story, leaving everything else in the file untouched.

    Works on the raw JSON so unknown keys and formatting-independent content
    survive the rewrite.

    Raises:
        PrdError: if the story is not in the file or the result fails validation
    """
    try:
        data = validate_file(prd_path, "prd")
    except ValidationError as e:
        raise PrdError(str(e)) from None

    matched = False
    for story in data["userStories"]:
        if story.get("id") == task_id:
            story["passes"] = True
            matched = True

    if not matched:
        raise PrdError(f"Story '{task_id}' not found in {prd_path}")

    try:
        validate_before_write(data, "prd", prd_path)
    except ValidationError as e:
        raise PrdError(str(e)) from None

    write_json_atomic(prd_path, data)
    logger.info(f"Marked {task_id} as complete in {prd_path.name}")


def save_prd(prd_path: Path, data: dict) -> TaskList:
    """Validate PRD data and write it to prd_path. Used by PRD generation.

    Raises:
        PrdError: if the data isn't a valid PRD
    """
    try:
        validate(data, "prd")
        task_list = parse_prd(data)
    except ValidationError as e:
        raise PrdError(str(e)) from None

    write_json_atomic(prd_path, data)
    return task_list
