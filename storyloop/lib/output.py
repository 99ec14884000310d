"""Console output for storyloop.

Status lines are tagged [INFO]/[SUCCESS]/[WARN]/[ERROR] and coloured when
stdout is a terminal. Kept apart from the controller logic so tests can
capture plain text.
"""

import os
import sys

MAX_REPLY_OUTPUT_CHARS = 3000
RULE_WIDTH = 58

_RESET = "\033[0m"
_COLORS = {
    "INFO": "\033[0;34m",
    "SUCCESS": "\033[0;32m",
    "WARN": "\033[1;33m",
    "ERROR": "\033[0;31m",
    "RULE": "\033[0;36m",
}


def _use_color() -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    return sys.stdout.isatty()


def _paint(kind: str, text: str) -> str:
    if not _use_color():
        return text
    return f"{_COLORS[kind]}{text}{_RESET}"


def _emit(kind: str, message: str):
    stream = sys.stderr if kind == "ERROR" else sys.stdout
    print(f"{_paint(kind, f'[{kind}]')} {message}", file=stream)


def info(message: str):
    _emit("INFO", message)


def success(message: str):
    _emit("SUCCESS", message)


def warn(message: str):
    _emit("WARN", message)


def error(message: str):
    _emit("ERROR", message)


def rule():
    """Print the separator line shown around each iteration header."""
    print(_paint("RULE", "━" * RULE_WIDTH))


def truncate_output(output: str, max_chars: int = MAX_REPLY_OUTPUT_CHARS) -> str:
    """Truncate output, keeping start and end for context.

    Returns the original text if it fits, otherwise head and tail around a marker.
    """
    if len(output) <= max_chars:
        return output
    marker = "\n\n... [truncated] ...\n\n"
    available = max_chars - len(marker)
    head_chars = (available * 2) // 3
    tail_chars = available - head_chars
    return f"{output[:head_chars]}{marker}{output[-tail_chars:]}"


def verbose_block(title: str, body: str):
    """Print a titled block for --verbose output."""
    print(f"\n{'='*60}")
    print(title)
    print('='*60)
    print(truncate_output(body))
    print('='*60 + "\n")
