"""
Completion signals emitted by the oracle.

The oracle reports the result of an iteration by printing one of three
literal markers somewhere in its reply:

    <complete>ALL_DONE</complete>
    <complete>STORY_DONE</complete>
    <complete>BLOCKED: reason</complete>

classify() maps a reply onto an Outcome. Markers are matched as substrings
and checked in the order above; the first match wins even when several
markers are present.
"""

import re
from dataclasses import dataclass
from enum import Enum

__all__ = [
    "ALL_DONE_MARKER",
    "STORY_DONE_MARKER",
    "BLOCKED_PREFIX",
    "OutcomeKind",
    "Outcome",
    "classify",
]

ALL_DONE_MARKER = "<complete>ALL_DONE</complete>"
STORY_DONE_MARKER = "<complete>STORY_DONE</complete>"
BLOCKED_PREFIX = "<complete>BLOCKED:"

_BLOCKED_CLOSED = re.compile(r"<complete>BLOCKED:(.*?)</complete>", re.DOTALL)
_BLOCKED_OPEN = re.compile(r"<complete>BLOCKED:([^\n]*)")


class OutcomeKind(Enum):
    ALL_DONE = "all_done"
    STORY_DONE = "story_done"
    BLOCKED = "blocked"
    NO_SIGNAL = "no_signal"


@dataclass(frozen=True)
class Outcome:
    """Classification of one oracle reply. reason is only set for BLOCKED."""
    kind: OutcomeKind
    reason: str | None = None

    @classmethod
    def all_done(cls) -> "Outcome":
        return cls(OutcomeKind.ALL_DONE)

    @classmethod
    def story_done(cls) -> "Outcome":
        return cls(OutcomeKind.STORY_DONE)

    @classmethod
    def blocked(cls, reason: str) -> "Outcome":
        return cls(OutcomeKind.BLOCKED, reason)

    @classmethod
    def no_signal(cls) -> "Outcome":
        return cls(OutcomeKind.NO_SIGNAL)

    def __str__(self) -> str:
        if self.kind is OutcomeKind.BLOCKED:
            return f"blocked: {self.reason}"
        return self.kind.value


def _blocked_reason(text: str) -> str:
    """Text after BLOCKED: up to the closing tag, whitespace-stripped.

    Without a closing tag the rest of the marker's line is used.
    """
    match = _BLOCKED_CLOSED.search(text)
    if match is None:
        match = _BLOCKED_OPEN.search(text)
    return match.group(1).strip() if match else ""


def classify(text: str | None) -> Outcome:
    """Classify an oracle reply. Pure; never raises."""
    if not text:
        return Outcome.no_signal()
    if ALL_DONE_MARKER in text:
        return Outcome.all_done()
    if STORY_DONE_MARKER in text:
        return Outcome.story_done()
    if BLOCKED_PREFIX in text:
        return Outcome.blocked(_blocked_reason(text))
    return Outcome.no_signal()
