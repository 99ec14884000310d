"""
Oracle integration for storyloop.

The oracle is the AI coding assistant CLI that implements one story per
iteration. It is treated as text in, text out: the prompt goes in (stdin or
argument, depending on the command template) and the whole reply comes back
once the process exits. There is no timeout and no retry.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from storyloop.lib.agents_config import AgentsConfig, StageCommand, get_stage_command

logger = logging.getLogger(__name__)

EXIT_NOT_FOUND = 127


@dataclass
class OracleReply:
    exit_code: int
    output: str  # stdout and stderr as produced
    text: str    # reply text with any JSON envelope removed

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def extract_response_text(output: str, output_format: str | None) -> str:
    """Unwrap the JSON reply envelope if there is one.

    gemini wraps the reply as {"response": "..."}, claude as {"result": "..."}.
    Anything that isn't such an envelope is returned unchanged.
    """
    if output_format != "json":
        return output

    try:
        wrapper = json.loads(output.strip())
    except json.JSONDecodeError:
        return output

    if isinstance(wrapper, dict):
        for key in ("response", "result"):
            value = wrapper.get(key)
            if isinstance(value, str):
                return value
    return output


class OracleAgent:
    def __init__(self, config: AgentsConfig, cwd: Path):
        self.config = config
        self.cwd = cwd

    def build_command(self, stage: str, prompt: str, sandbox: bool = False) -> StageCommand:
        context = {"prompt": prompt}
        if sandbox:
            context["sandbox"] = self.config.sandbox_flag
        return get_stage_command(self.config, stage, context)

    def invoke(self, prompt: str, sandbox: bool = False, log_file: Path = None,
               stage: str = "iterate") -> OracleReply:
        """
        Run the oracle for one prompt and block until it exits.

        stderr is merged into the output, so markers printed on either
        stream are seen by the classifier.
        """
        command = self.build_command(stage, prompt, sandbox)
        logger.debug(f"Running oracle: {' '.join(command.cmd[:4])}...")

        try:
            result = subprocess.run(
                command.cmd,
                cwd=str(self.cwd),
                input=command.get_stdin_input(prompt),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",  # output is not guaranteed to be UTF-8
            )
            exit_code, output = result.returncode, result.stdout or ""
        except FileNotFoundError:
            exit_code = EXIT_NOT_FOUND
            output = f"Oracle command not found: {command.cmd[0]}"
            logger.error(output)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            shown = [arg if arg != prompt else "<prompt>" for arg in command.cmd]
            log_file.write_text(
                f"=== COMMAND ===\n{' '.join(shown)}\n\n"
                f"=== EXIT CODE ===\n{exit_code}\n\n"
                f"=== OUTPUT ===\n{output}\n",
                encoding="utf-8",
            )

        return OracleReply(
            exit_code=exit_code,
            output=output,
            text=extract_response_text(output, command.output_format),
        )

    def run_interactive(self, stage: str, context: dict[str, str]) -> int:
        """Run a stage attached to the user's terminal and return its exit code."""
        command = get_stage_command(self.config, stage, context)
        try:
            return subprocess.run(command.cmd, cwd=str(self.cwd)).returncode
        except FileNotFoundError:
            logger.error(f"Oracle command not found: {command.cmd[0]}")
            return EXIT_NOT_FOUND
