"""Pre-flight checks run once before the first iteration."""

import logging

from storyloop.git import get_git_dir
from storyloop.lib import output
from storyloop.lib.agents_config import AgentsConfig, get_stage_binary, check_binary_available
from storyloop.lib.config import LoopConfig
from storyloop.pm.prd import load_prd, PrdError

logger = logging.getLogger(__name__)

SANDBOX_RUNTIMES = ("docker", "podman")


class MissingPrerequisite(Exception):
    """A tool or input file the loop needs is absent or unusable."""

    def __init__(self, message: str, hint: str = ""):
        self.hint = hint
        super().__init__(message)


def find_sandbox_runtime() -> str | None:
    """First available container runtime, or None."""
    for runtime in SANDBOX_RUNTIMES:
        if check_binary_available(runtime):
            return runtime
    return None


def check_prerequisites(config: LoopConfig, agents: AgentsConfig) -> None:
    """
    Verify everything a run needs before touching git.

    Raises:
        MissingPrerequisite: on the first missing tool or file
    """
    oracle = get_stage_binary(agents, "iterate")
    if not oracle or not check_binary_available(oracle):
        hint = "npm install -g @google/gemini-cli" if oracle == "gemini" else \
            "Install it, or set stages.iterate in agents.yaml"
        raise MissingPrerequisite(f"Oracle CLI '{oracle}' not found.", hint)

    if not check_binary_available("git"):
        raise MissingPrerequisite("git not found.")

    if get_git_dir(config.workdir) is None:
        raise MissingPrerequisite(f"{config.workdir} is not a git repository.", "Run git init first")

    if not config.prd_file.exists():
        raise MissingPrerequisite(
            f"{config.prd_file.name} not found. Create one first.",
            "Run storyloop-setup or storyloop-prd to generate it",
        )

    try:
        load_prd(config.prd_file)
    except PrdError as e:
        raise MissingPrerequisite(f"{config.prd_file.name} is invalid: {e}") from None

    if not config.prompt_file.exists():
        raise MissingPrerequisite(f"{config.prompt_file.name} not found. Create one first.")

    if config.use_sandbox:
        runtime = find_sandbox_runtime()
        if runtime:
            output.info(f"Sandbox: {runtime.capitalize()} available")
        else:
            output.warn("Docker/Podman not found. Sandbox may use macOS Seatbelt or fail.")
            output.info("Install Docker or use --no-sandbox flag")
