"""
Parser for storyloop.env.

The file looks like a shell snippet (KEY=value, optional `export`, quotes)
but is never executed. Values containing shell metacharacters are rejected
rather than interpreted.
"""

import re
from pathlib import Path

FORBIDDEN_PATTERNS = [
    r'`',           # backticks
    r'\$\(',        # command substitution
    r'\$\{',        # variable expansion
    r';',           # command chaining
    r'&&',
    r'\|',          # pipes and || chaining
]

KEY_PATTERN = re.compile(r'^[A-Z][A-Z0-9_]*$')

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def parse_line(line: str) -> tuple[str, str] | None:
    """(key, value) for an assignment, None for blanks and comments.

    Raises:
        ValueError: malformed line or forbidden value
    """
    line = line.strip()
    if not line or line.startswith('#'):
        return None

    if line.startswith("export "):
        line = line[len("export "):].lstrip()

    key, sep, value = line.partition('=')
    if not sep:
        raise ValueError("invalid syntax (no '=')")

    key = key.strip()
    if not KEY_PATTERN.match(key):
        raise ValueError(f"invalid key '{key}'")

    value = _unquote(value.strip())
    if any(re.search(pattern, value) for pattern in FORBIDDEN_PATTERNS):
        raise ValueError(f"forbidden pattern in value of {key}")

    return key, value


def load_env(filepath: Path) -> dict[str, str]:
    """
    Parse an env file. Later assignments win.

    Raises:
        FileNotFoundError: if file doesn't exist
        ValueError: first bad line, as "<file>:<line>: <problem>"
    """
    path = Path(filepath)
    if not path.exists():
        raise FileNotFoundError(f"Env file not found: {path}")

    result = {}
    for lineno, line in enumerate(path.read_text().splitlines(), 1):
        try:
            parsed = parse_line(line)
        except ValueError as e:
            raise ValueError(f"{path.name}:{lineno}: {e}") from None
        if parsed is not None:
            key, value = parsed
            result[key] = value
    return result


def parse_bool(value: str, key: str) -> bool:
    """Interpret an env value as a boolean."""
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"{key} must be true/false, got '{value}'")
