"""
storyloop-prd - generate prd.json from a project description.
"""

import json
import sys
from pathlib import Path

from storyloop.agents.oracle import OracleAgent
from storyloop.lib import output
from storyloop.lib.agents_config import check_binary_available, get_stage_binary, load_agents_config
from storyloop.lib.config import load_loop_config
from storyloop.pm.generate import PrdGenerationError, generate_prd


def read_description(args, stdin=None) -> str | None:
    """Description from the arguments, or from piped stdin. None if neither."""
    stdin = stdin or sys.stdin
    if args.description:
        return " ".join(args.description)
    if not stdin.isatty():
        text = stdin.read()
        return text if text.strip() else None
    return None


def cmd_generate_prd(args, workdir: Path, stdin=None) -> int:
    description = read_description(args, stdin)
    if not description:
        print('Usage: storyloop-prd "Your project description"')
        print("   or: storyloop-prd < description.txt")
        return 1

    agents = load_agents_config(workdir)
    binary = get_stage_binary(agents, "generate_prd")
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

    output.info("Generating PRD from description...")
    try:
        task_list = generate_prd(OracleAgent(agents, workdir), description, prd_file)
    except PrdGenerationError as e:
        output.error(str(e))
        if e.raw:
            print("Raw response:")
            print(e.raw)
        return 1

    output.success(f"Generated {prd_file.name} ({task_list.total} stories):")
    print()
    print(json.dumps(json.loads(prd_file.read_text()), indent=2))
    print()
    output.info("Review and edit as needed, then run storyloop")
    return 0
