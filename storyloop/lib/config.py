"""
Configuration loader for storyloop.

Settings come from an optional storyloop.env in the working directory.
Command-line flags are applied on top by the CLI.
"""

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from storyloop.lib import envparse

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "storyloop.env"

DEFAULT_MAX_ITERATIONS = 10
DEFAULT_PAUSE_SECONDS = 2.0
DEFAULT_BRANCH = "main"


@dataclass(frozen=True)
class LoopConfig:
    """Everything the iteration controller needs to know about its environment."""
    workdir: Path
    prd_file: Path
    progress_file: Path
    prompt_file: Path
    archive_dir: Path
    last_branch_file: Path
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    use_sandbox: bool = True
    pause_seconds: float = DEFAULT_PAUSE_SECONDS
    default_branch: str = DEFAULT_BRANCH
    verbose: bool = False
    runs_dir: Path | None = None  # None disables per-run records

    def with_overrides(self, **changes) -> "LoopConfig":
        """Return a copy with the non-None values in changes applied."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, **changes)


def _resolve(workdir: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else workdir / path


def _positive_int(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got '{raw}'") from None
    if value < 1:
        raise ValueError(f"{key} must be at least 1, got {value}")
    return value


def _non_negative_float(env: dict, key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{key} must be a number, got '{raw}'") from None
    if value < 0:
        raise ValueError(f"{key} must not be negative, got {value}")
    return value


def load_loop_config(workdir: Path) -> LoopConfig:
    """Load storyloop.env from workdir (if present) and return LoopConfig.

    Raises:
        ValueError: if the file exists but holds invalid values
    """
    workdir = workdir.resolve()
    config_path = workdir / CONFIG_FILENAME

    env: dict[str, str] = {}
    if config_path.exists():
        env = envparse.load_env(config_path)
        logger.debug(f"Loaded {len(env)} settings from {config_path}")

    known = {
        "PRD_FILE", "PROGRESS_FILE", "PROMPT_FILE", "ARCHIVE_DIR",
        "MAX_ITERATIONS", "USE_SANDBOX", "PAUSE_SECONDS", "DEFAULT_BRANCH",
    }
    for key in sorted(set(env) - known):
        logger.warning(f"Unknown setting '{key}' in {CONFIG_FILENAME} ignored")

    use_sandbox = True
    if "USE_SANDBOX" in env:
        use_sandbox = envparse.parse_bool(env["USE_SANDBOX"], "USE_SANDBOX")

    return LoopConfig(
        workdir=workdir,
        prd_file=_resolve(workdir, env.get("PRD_FILE", "prd.json")),
        progress_file=_resolve(workdir, env.get("PROGRESS_FILE", "progress.txt")),
        prompt_file=_resolve(workdir, env.get("PROMPT_FILE", "prompt.md")),
        archive_dir=_resolve(workdir, env.get("ARCHIVE_DIR", "archive")),
        last_branch_file=workdir / ".last-branch",
        max_iterations=_positive_int(env, "MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS),
        use_sandbox=use_sandbox,
        pause_seconds=_non_negative_float(env, "PAUSE_SECONDS", DEFAULT_PAUSE_SECONDS),
        default_branch=env.get("DEFAULT_BRANCH", DEFAULT_BRANCH),
    )
