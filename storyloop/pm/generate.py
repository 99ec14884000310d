"""
PRD generation from a free-text project description.
"""

import json
import logging
import re
from pathlib import Path

from storyloop.agents.oracle import OracleAgent
from storyloop.lib.prompts import render_prompt
from storyloop.pm.models import TaskList
from storyloop.pm.prd import PrdError, save_prd

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r'```(?:json)?\s*\n(\{[\s\S]*?\})\s*\n```')


class PrdGenerationError(Exception):
    """The oracle did not return a usable PRD. raw holds its reply."""

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


def extract_json_object(text: str) -> str:
    """Pull a JSON object out of a reply that may wrap it in prose or fences.

    Tries a ```json fence first, then a bare object starting on its own line
    (brace-matched), and falls back to the whole text.
    """
    text = text.strip()

    fence_match = _FENCE_PATTERN.search(text)
    if fence_match:
        return fence_match.group(1)

    lines = text.split('\n')
    json_start = None
    depth = 0
    for i, line in enumerate(lines):
        stripped = line.strip()
        if json_start is None:
            if not stripped.startswith('{'):
                continue
            json_start = i
            depth = 0
        depth += stripped.count('{') - stripped.count('}')
        if depth == 0:
            return '\n'.join(lines[json_start:i + 1])

    return text


def generate_prd(oracle: OracleAgent, description: str, prd_path: Path) -> TaskList:
    """Ask the oracle for a PRD, validate it and write it to prd_path.

    Raises:
        PrdGenerationError: oracle failed, or its reply isn't a valid PRD
    """
    prompt = render_prompt("generate_prd", description=description.strip())
    reply = oracle.invoke(prompt, stage="generate_prd")

    if not reply.success:
        raise PrdGenerationError(f"Oracle failed (exit {reply.exit_code})", reply.output)

    candidate = extract_json_object(reply.text)
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise PrdGenerationError(f"Failed to generate valid JSON: {e}", reply.text) from None

    if not isinstance(data, dict):
        raise PrdGenerationError("Failed to generate valid JSON: expected an object", reply.text)

    try:
        return save_prd(prd_path, data)
    except PrdError as e:
        raise PrdGenerationError(f"Generated PRD is invalid: {e}", reply.text) from None
