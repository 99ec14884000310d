"""
storyloop-setup - interactive PRD interview.

Temporarily replaces GEMINI.md with interview instructions, hands the
terminal to the oracle, then puts the original GEMINI.md back.
"""

import os
import shutil
from pathlib import Path

from storyloop.agents.oracle import OracleAgent
from storyloop.lib import output
from storyloop.lib.agents_config import check_binary_available, get_stage_binary, load_agents_config
from storyloop.lib.config import load_loop_config
from storyloop.lib.prompts import load_prompt
from storyloop.pm.prd import PrdError, load_prd

INSTRUCTIONS_FILENAME = "GEMINI.md"


def confirm_overwrite(prd_file: Path, input_fn=input) -> bool:
    output.warn(f"{prd_file.name} already exists!")
    reply = input_fn("Overwrite? (y/N) ").strip().lower()
    return reply in ("y", "yes")


def run_interview(oracle: OracleAgent, workdir: Path) -> int:
    """Run the interview with GEMINI.md swapped out. Always restores it."""
    instructions = workdir / INSTRUCTIONS_FILENAME
    backup = None
    if instructions.exists():
        backup = workdir / f".{INSTRUCTIONS_FILENAME}.backup.{os.getpid()}"
        shutil.copy2(instructions, backup)

    instructions.write_text(load_prompt("interview"))
    try:
        return oracle.run_interactive("interview", {"instructions": str(instructions)})
    finally:
        if backup is not None and backup.exists():
            shutil.move(str(backup), str(instructions))
        else:
            instructions.unlink(missing_ok=True)


def cmd_setup(args, workdir: Path, input_fn=input) -> int:
    agents = load_agents_config(workdir)
    binary = get_stage_binary(agents, "interview")
    if not check_binary_available(binary):
        output.error(f"Oracle CLI '{binary}' not found.")
        if binary == "gemini":
            output.info("npm install -g @google/gemini-cli")
        return 1

    try:
        prd_file = load_loop_config(workdir).prd_file
    except (ValueError, OSError) as e:
        output.error(f"Invalid configuration: {e}")
        return 1

    if prd_file.exists() and not args.yes and not confirm_overwrite(prd_file, input_fn):
        return 0

    output.info("Starting interactive PRD generator...")
    output.info(f"{binary} will help you create a {prd_file.name} file.")
    print()
    output.rule()
    print(f"When done, ask it to 'write the {prd_file.name} file'")
    print("Type /quit or Ctrl+D to exit")
    output.rule()
    print()

    run_interview(OracleAgent(agents, workdir), workdir)

    print()
    if not prd_file.exists():
        output.warn(f"{prd_file.name} was not created.")
        output.info(f"Run storyloop-setup again and ask to 'write the {prd_file.name} file'")
        return 0

    try:
        task_list = load_prd(prd_file)
    except PrdError as e:
        output.warn(f"{prd_file.name} was written but is not valid: {e}")
        return 1

    output.success(f"{prd_file.name} created with {task_list.total} stories!")
    print()
    output.info("Run storyloop to start the autonomous agent")
    return 0
