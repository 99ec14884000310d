"""
storyloop - run the oracle through prd.json, one story per iteration.
"""

import logging
from pathlib import Path

from storyloop.agents.oracle import OracleAgent
from storyloop.git import get_git_dir
from storyloop.lib import output
from storyloop.lib.agents_config import get_stage_binary, load_agents_config
from storyloop.lib.config import LoopConfig, load_loop_config
from storyloop.pm.prd import PrdError
from storyloop.runner.loop import EXIT_FAILED, BranchSetupError, IterationController
from storyloop.runner.prerequisites import MissingPrerequisite, check_prerequisites

logger = logging.getLogger(__name__)

RUNS_SUBDIR = ("storyloop", "runs")


def build_config(args, workdir: Path) -> LoopConfig:
    """storyloop.env settings with command-line flags on top.

    Raises:
        ValueError: invalid storyloop.env
    """
    config = load_loop_config(workdir)
    config = config.with_overrides(
        max_iterations=args.iterations,
        use_sandbox=args.sandbox,
        verbose=args.verbose or None,
    )

    git_dir = get_git_dir(config.workdir)
    if git_dir is not None:
        config = config.with_overrides(runs_dir=git_dir.joinpath(*RUNS_SUBDIR))
    return config


def cmd_run(args, workdir: Path) -> int:
    """Execute the loop. Returns the process exit code."""
    try:
        config = build_config(args, workdir)
    except (ValueError, OSError) as e:
        output.error(f"Invalid configuration: {e}")
        return EXIT_FAILED

    agents = load_agents_config(config.workdir)

    output.info(f"Starting autonomous agent loop with {get_stage_binary(agents, 'iterate')}")
    output.info(f"Max iterations: {config.max_iterations}")
    if config.use_sandbox:
        output.info("Sandbox: ENABLED (Docker/Podman isolation)")
    else:
        output.warn("Sandbox: DISABLED (running with full system access)")

    try:
        check_prerequisites(config, agents)
    except MissingPrerequisite as e:
        output.error(str(e))
        if e.hint:
            output.info(e.hint)
        return EXIT_FAILED

    controller = IterationController(config, OracleAgent(agents, config.workdir))
    try:
        controller.prepare()
    except (PrdError, BranchSetupError, OSError) as e:
        output.error(str(e))
        return EXIT_FAILED

    if controller.ctx.run_dir is not None:
        output.info(f"Run records: {controller.ctx.run_dir}")

    result = controller.run()
    logger.debug(f"Run ended: {result}")
    return result.exit_code
