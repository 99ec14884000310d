"""Git status operations."""

from pathlib import Path

from storyloop.git.runner import run_git


def has_uncommitted_changes(worktree: Path) -> bool:
    """Check if the working tree has staged, unstaged or untracked changes."""
    result = run_git(["status", "--porcelain"], worktree)
    return bool(result.stdout.strip())


def get_git_dir(worktree: Path) -> Path | None:
    """Absolute path of the repository's .git directory, or None outside a repo."""
    result = run_git(["rev-parse", "--absolute-git-dir"], worktree)
    if result.success and result.stdout.strip():
        return Path(result.stdout.strip())
    return None
