"""Git commit operations.

Checkpoints always stage everything and allow empty commits. Git reporting
"nothing to commit" is tolerated; every other failure raises CheckpointError.
"""

import logging
from pathlib import Path

from storyloop.git.runner import run_git, GitResult

logger = logging.getLogger(__name__)

_NOTHING_TO_COMMIT_MARKERS = (
    "nothing to commit",
    "nothing added to commit",
    "no changes added to commit",
)


class CheckpointError(Exception):
    """Git refused to record a checkpoint."""

    def __init__(self, message: str, result: GitResult | None = None):
        self.result = result
        super().__init__(message)


def stage_all(worktree: Path) -> GitResult:
    """Stage all changes (new, modified, deleted)."""
    return run_git(["add", "-A"], worktree)


def commit(worktree: Path, message: str, allow_empty: bool = False) -> GitResult:
    """Create a commit with the given message."""
    args = ["commit", "-m", message]
    if allow_empty:
        args.append("--allow-empty")
    return run_git(args, worktree)


def is_nothing_to_commit(result: GitResult) -> bool:
    """True if a failed commit only failed because there was nothing to record."""
    text = f"{result.stdout}\n{result.stderr}".lower()
    return any(marker in text for marker in _NOTHING_TO_COMMIT_MARKERS)


def checkpoint(worktree: Path, message: str) -> bool:
    """
    Stage everything and commit.

    Returns:
        True if a commit was created, False if git had nothing to commit.

    Raises:
        CheckpointError: staging failed, or the commit failed for any other reason.
    """
    staged = stage_all(worktree)
    if not staged.success:
        raise CheckpointError(f"git add failed: {staged.output}", staged)

    result = commit(worktree, message, allow_empty=True)
    if result.success:
        logger.debug(f"Checkpoint created: {message}")
        return True

    if is_nothing_to_commit(result):
        logger.info(f"Nothing to commit for checkpoint '{message}'")
        return False

    raise CheckpointError(f"git commit failed: {result.output}", result)
