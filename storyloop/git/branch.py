"""Git branch operations."""

from pathlib import Path

from storyloop.git.runner import run_git, GitResult


def get_current_branch(worktree: Path) -> str | None:
    """Get the current branch name, or None if detached HEAD or not a repo."""
    result = run_git(["branch", "--show-current"], worktree)
    if result.success:
        return result.stdout.strip() or None
    return None


def branch_exists(repo: Path, branch: str) -> bool:
    """Check if a local branch exists."""
    result = run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], repo)
    return result.success


def checkout_branch(worktree: Path, branch: str) -> GitResult:
    """Switch to an existing branch."""
    return run_git(["checkout", branch], worktree)


def create_branch(worktree: Path, branch: str) -> GitResult:
    """Create a branch from HEAD and switch to it."""
    return run_git(["checkout", "-b", branch], worktree)
