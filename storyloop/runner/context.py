"""
Run context and run records for storyloop.

Each run can keep a directory of records:

    <runs_dir>/<run_id>/
        run.log            timestamped controller events
        iteration-<n>.log  oracle command, exit code and output
        result.json        final status

The CLI points runs_dir inside the repository's .git directory so the
records never show up as working-tree changes.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from storyloop.git import get_current_branch
from storyloop.git.runner import run_git
from storyloop.lib.config import LoopConfig
from storyloop.lib.validate import validate_before_write

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """Context for a single run."""
    run_id: str
    config: LoopConfig
    run_dir: Optional[Path] = None
    start_time: datetime = field(default_factory=datetime.now)
    transitions: list = field(default_factory=list)

    @classmethod
    def create(cls, config: LoopConfig) -> 'RunContext':
        """Create a run context, with a fresh run directory if runs_dir is set."""
        run_id = datetime.now().strftime("%Y%m%d-%H%M%S")

        run_dir = None
        if config.runs_dir is not None:
            run_dir = config.runs_dir / run_id
            suffix = 1
            while run_dir.exists():
                suffix += 1
                run_dir = config.runs_dir / f"{run_id}-{suffix}"
            run_dir.mkdir(parents=True)
            run_id = run_dir.name

        return cls(run_id=run_id, config=config, run_dir=run_dir)

    def log(self, message: str):
        """Append to run.log and the module logger."""
        logger.debug(message)
        if self.run_dir is None:
            return
        timestamp = datetime.now().isoformat()
        with open(self.run_dir / "run.log", "a") as f:
            f.write(f"[{timestamp}] {message}\n")

    def record_transition(self, from_state: str, to_state: str, trigger: str):
        self.transitions.append({"from": from_state, "to": to_state, "trigger": trigger})
        self.log(f"state {from_state} -> {to_state} ({trigger})")

    def iteration_log(self, iteration: int) -> Optional[Path]:
        """Where the oracle transcript for an iteration goes, if records are kept."""
        if self.run_dir is None:
            return None
        return self.run_dir / f"iteration-{iteration}.log"

    def write_result(self, status: str, exit_code: int, iterations: int,
                     task_id: str | None = None, reason: str = "",
                     project: str | None = None,
                     stories: tuple[int, int] | None = None) -> Optional[Path]:
        """Write result.json. Returns its path, or None when records are off."""
        if self.run_dir is None:
            return None

        end_time = datetime.now()
        result = {
            "version": 1,
            "run_id": self.run_id,
            "branch": get_current_branch(self.config.workdir),
            "status": status,
            "exit_code": exit_code,
            "iterations": iterations,
            "task_id": task_id,
            "reason": reason,
            "timestamps": {
                "started": self.start_time.isoformat(),
                "ended": end_time.isoformat(),
                "duration_seconds": (end_time - self.start_time).total_seconds(),
            },
        }
        if project is not None:
            result["project"] = project
        if stories is not None:
            result["stories"] = {"done": stories[0], "total": stories[1]}

        head = run_git(["rev-parse", "HEAD"], self.config.workdir)
        if head.success:
            result["commit_sha"] = head.stdout.strip()

        result_path = self.run_dir / "result.json"
        validate_before_write(result, "result", result_path)
        result_path.write_text(json.dumps(result, indent=2))
        return result_path
