"""
Oracle command configuration.

Loads agents.yaml from the working directory to decide which CLI command runs
for each stage. Without a config file the defaults below drive the gemini CLI.

STAGE COMMAND TEMPLATES
=======================

Templates support {variable} substitution from a context dict:
- {prompt}: the prompt text. If present the prompt becomes a CLI argument;
  if absent the prompt is passed via stdin.
- {sandbox}: the sandbox flag, or nothing when sandboxing is off
  (iterate stage only).
- {instructions}: path of the instructions file (interview stage only).

Example agents.yaml:

    stages:
      iterate: claude --dangerously-skip-permissions -p --output-format json
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "agents.yaml"

DEFAULT_STAGE_COMMANDS = {
    "iterate": "gemini {sandbox} -p - --yolo --output-format json",
    # One story per call; prompt on stdin, auto-approve, JSON envelope

    "generate_prd": "gemini -p {prompt} --output-format json",
    # Project description -> prd.json

    "interview": "gemini -i @{instructions}",
    # Interactive PRD interview, inherits the terminal
}

DEFAULT_SANDBOX_FLAG = "-s"

STAGE_REQUIRED_VARIABLES = {
    "interview": ["instructions"],
}

_PROMPT_PLACEHOLDER = "__PROMPT_PLACEHOLDER__"


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    stages: dict[str, str] = field(default_factory=lambda: DEFAULT_STAGE_COMMANDS.copy())
    sandbox_flag: str = DEFAULT_SANDBOX_FLAG


def load_agents_config(workdir: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    If workdir is None or the file doesn't exist, returns defaults.
    Unparseable files are logged and ignored.
    """
    if workdir is None:
        return AgentsConfig()

    config_path = workdir / CONFIG_FILENAME
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping at top level")
        return AgentsConfig()

    stages = DEFAULT_STAGE_COMMANDS.copy()
    overrides = data.get("stages") or {}
    if isinstance(overrides, dict):
        for stage, command in overrides.items():
            if not isinstance(command, str) or not command.strip():
                logger.warning(f"Ignoring empty or non-string command for stage '{stage}'")
                continue
            stages[stage] = command
    else:
        logger.warning(f"Ignoring 'stages' in {config_path}: expected a mapping")

    sandbox_flag = data.get("sandbox_flag", DEFAULT_SANDBOX_FLAG)
    if not isinstance(sandbox_flag, str):
        logger.warning(f"Ignoring non-string sandbox_flag in {config_path}")
        sandbox_flag = DEFAULT_SANDBOX_FLAG

    return AgentsConfig(stages=stages, sandbox_flag=sandbox_flag)


@dataclass
class StageCommand:
    """Result of building a stage command."""
    cmd: list[str]  # Command ready for subprocess
    prompt_via_stdin: bool
    output_format: str | None  # "json" if --output-format json, else None

    def get_stdin_input(self, prompt: str) -> str | None:
        """Return prompt if it should be passed via stdin, else None."""
        return prompt if self.prompt_via_stdin else None


def _detect_output_format(template: str) -> str | None:
    """Find the value of --output-format in a command template."""
    parts = shlex.split(re.sub(r'\{\w+\}', 'X', template))
    for i, part in enumerate(parts):
        if part == "--output-format" and i + 1 < len(parts):
            return parts[i + 1]
        if part.startswith("--output-format="):
            return part.split("=", 1)[1]
    return None


def get_stage_command(
    config: AgentsConfig,
    stage: str,
    context: dict[str, str] | None = None,
) -> StageCommand:
    """Build command list for a stage with variable substitution.

    Raises:
        ValueError: If stage is unknown or required variables are missing.

    Example:
        >>> result = get_stage_command(AgentsConfig(), "iterate", {"sandbox": "-s"})
        >>> result.cmd
        ['gemini', '-s', '-p', '-', '--yolo', '--output-format', 'json']
        >>> result.prompt_via_stdin
        True
    """
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    context = dict(context or {})
    missing = [v for v in STAGE_REQUIRED_VARIABLES.get(stage, []) if v not in context]
    if missing:
        raise ValueError(f"Stage '{stage}' requires variables {missing} in context")

    cmd_template = config.stages[stage]
    prompt_via_stdin = "{prompt}" not in cmd_template
    output_format = _detect_output_format(cmd_template)

    # Keep the prompt out of shlex: it may contain quotes and newlines
    prompt_value = context.pop("prompt", None)
    if prompt_value is not None:
        cmd_template = cmd_template.replace("{prompt}", _PROMPT_PLACEHOLDER)

    # Optional flags default to nothing
    context.setdefault("sandbox", "")

    for key, value in context.items():
        cmd_template = cmd_template.replace(f"{{{key}}}", shlex.quote(value) if value else "")

    remaining_vars = re.findall(r'\{(\w+)\}', cmd_template)
    if remaining_vars:
        logger.error(
            f"Stage '{stage}' has unsubstituted variables: {remaining_vars}. "
            f"Template: {cmd_template}"
        )

    cmd = shlex.split(cmd_template)

    if prompt_value is not None:
        cmd = [prompt_value if arg == _PROMPT_PLACEHOLDER else arg for arg in cmd]

    return StageCommand(
        cmd=cmd,
        prompt_via_stdin=prompt_via_stdin,
        output_format=output_format,
    )


def get_stage_binary(config: AgentsConfig, stage: str) -> str:
    """Get the binary name for a stage (first element of command)."""
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    parts = shlex.split(re.sub(r'\{\w+\}', 'X', config.stages[stage]))
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None
