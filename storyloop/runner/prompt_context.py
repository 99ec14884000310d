"""Builds the prompt sent to the oracle for one iteration."""

import json

from storyloop.lib.prompts import render_prompt
from storyloop.pm.models import Task, TaskList


def render_iteration_prompt(task_list: TaskList, task: Task, iteration: int,
                            progress: str, template: str) -> str:
    """
    Render the full prompt for one iteration.

    Order: project header, iteration number, the story as JSON, the whole
    progress log, a rule, then the user's prompt template. Trailing newlines
    of progress and template are dropped so the fences close cleanly.
    Deterministic for equal inputs.
    """
    return render_prompt(
        "iteration",
        project_name=task_list.name,
        project_description=task_list.description,
        iteration=iteration,
        story_json=json.dumps(task.to_dict(), indent=2),
        progress=progress.rstrip("\n"),
        template=template.rstrip("\n"),
    )
