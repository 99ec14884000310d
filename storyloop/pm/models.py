"""
Data models for the PRD (task list).
"""

from dataclasses import dataclass, field
from typing import Optional

# On-disk key -> attribute. Keys not listed here are kept in `extra`.
STORY_KEYS = {
    "id": "id",
    "title": "title",
    "priority": "priority",
    "passes": "done",
    "acceptanceCriteria": "acceptance_criteria",
    "technicalNotes": "technical_notes",
}


@dataclass
class Task:
    """One user story. `done` is stored as `passes` in prd.json.

    priority is advisory: selection always follows list order.
    """
    id: str                                    # US-001
    title: str
    priority: int = 0
    done: bool = False
    acceptance_criteria: list[str] = field(default_factory=list)
    technical_notes: Optional[str] = None
    extra: dict = field(default_factory=dict)  # Unknown keys, preserved verbatim

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        known = {attr: data[key] for key, attr in STORY_KEYS.items() if key in data}
        extra = {k: v for k, v in data.items() if k not in STORY_KEYS}
        return cls(**known, extra=extra)

    def to_dict(self) -> dict:
        """Serialize with prd.json key names, in the order the file uses."""
        data = {
            "id": self.id,
            "title": self.title,
            "priority": self.priority,
            "passes": self.done,
            "acceptanceCriteria": list(self.acceptance_criteria),
        }
        if self.technical_notes is not None:
            data["technicalNotes"] = self.technical_notes
        data.update(self.extra)
        return data


@dataclass
class TaskList:
    """The whole prd.json: project metadata plus ordered stories."""
    name: str
    branch: str
    description: str
    tasks: list[Task] = field(default_factory=list)

    @property
    def done_count(self) -> int:
        return sum(1 for t in self.tasks if t.done)

    @property
    def total(self) -> int:
        return len(self.tasks)

    @property
    def all_done(self) -> bool:
        return all(t.done for t in self.tasks)

    def progress(self) -> str:
        """Completed/total, e.g. '2/5'."""
        return f"{self.done_count}/{self.total}"

    def get(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None
