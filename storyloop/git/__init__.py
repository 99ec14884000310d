"""Git operations for storyloop.

Return type conventions:
- Functions returning GitResult: caller must check .success before using output.
- Functions returning bool: True on success/condition met, False otherwise.
- checkpoint() raises CheckpointError instead, see storyloop.git.commit.
"""

from storyloop.git.status import (
    has_uncommitted_changes,
    get_git_dir,
)
from storyloop.git.branch import (
    get_current_branch,
    branch_exists,
    checkout_branch,
    create_branch,
)
from storyloop.git.commit import (
    CheckpointError,
    stage_all,
    commit,
    checkpoint,
)

__all__ = [
    # status
    "has_uncommitted_changes",
    "get_git_dir",
    # branch
    "get_current_branch",
    "branch_exists",
    "checkout_branch",
    "create_branch",
    # commit
    "CheckpointError",
    "stage_all",
    "commit",
    "checkpoint",
]
