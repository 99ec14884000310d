"""Runs git against a working tree and captures the result."""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
EXIT_GIT_MISSING = 127

# Never block on a credential or editor prompt
_GIT_ENV = {"GIT_TERMINAL_PROMPT": "0", "GIT_EDITOR": "true"}


@dataclass
class GitResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """stdout and stderr joined, for error messages."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


def run_git(args: list[str], cwd: Path, timeout: int = DEFAULT_TIMEOUT) -> GitResult:
    """Run `git -C cwd <args>`.

    Never raises: a timeout comes back with timed_out set and returncode -1,
    a missing git binary as returncode 127.
    """
    cmd = ["git", "-C", str(cwd), *args]
    logger.debug(f"git {' '.join(args)}")
    try:
        proc = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            env={**os.environ, **_GIT_ENV},
        )
    except subprocess.TimeoutExpired:
        return GitResult(-1, "", f"Command timed out after {timeout}s", timed_out=True)
    except FileNotFoundError:
        return GitResult(EXIT_GIT_MISSING, "", "git not found on PATH")

    return GitResult(proc.returncode, proc.stdout, proc.stderr)
