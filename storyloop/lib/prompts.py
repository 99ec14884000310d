"""
Prompt templates shipped in storyloop/prompts/.

Templates are markdown rendered with str.format(); literal braces are
written {{ }}. HTML comments hold notes for maintainers and are removed
before anything reaches the oracle.
"""

import logging
import re
import string
from functools import lru_cache
from pathlib import Path

logger = logging.getLogger(__name__)

__all__ = ["PromptError", "load_prompt", "template_fields", "render_prompt", "clear_cache", "PROMPTS_DIR"]

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_HTML_COMMENT = re.compile(r'<!--.*?-->\s*', re.DOTALL)


class PromptError(Exception):
    pass


@lru_cache(maxsize=32)
def load_prompt(name: str) -> str:
    """Template text for `name` (without .md), comments stripped.

    Raises:
        PromptError: no such template
    """
    path = PROMPTS_DIR / f"{name}.md"
    try:
        raw = path.read_text()
    except FileNotFoundError:
        raise PromptError(f"Prompt template '{name}' not found. Expected file: {path}") from None

    logger.debug(f"Loaded prompt template {name}")
    return _HTML_COMMENT.sub('', raw).lstrip()


def template_fields(name: str) -> set[str]:
    """Placeholder names a template expects."""
    return {
        field for _, field, _, _ in string.Formatter().parse(load_prompt(name))
        if field
    }


def render_prompt(name: str, **kwargs) -> str:
    """Fill a template.

    Raises:
        PromptError: template missing, or placeholders left without a value

    Example:
        render_prompt('generate_prd', description='A todo API')
    """
    missing = sorted(template_fields(name) - kwargs.keys())
    if missing:
        raise PromptError(
            f"Missing required variable(s) {missing} for prompt '{name}'. "
            f"Provided: {sorted(kwargs)}"
        )
    return load_prompt(name).format(**kwargs)


def clear_cache():
    load_prompt.cache_clear()
