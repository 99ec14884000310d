"""Run state machine using the transitions library.

Tracks where the iteration controller is within a run:

    idle -> selecting -> invoking -> committing    -> selecting ...
                                  -> checkpointing -> selecting ...

and the three ways a run ends: succeeded, failed, exhausted.

Usage:
    fsm = RunFSM()
    fsm.start()
    fsm.dispatch()      # a story was selected
    fsm.story_done()    # oracle reported STORY_DONE
    fsm.next_iteration()
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)


STATES = [
    "idle",
    "selecting",
    "invoking",
    "committing",
    "checkpointing",
    "succeeded",
    "failed",
    "exhausted",
]

TERMINAL_STATES = ("succeeded", "failed", "exhausted")

_ACTIVE = ["idle", "selecting", "invoking", "committing", "checkpointing"]

TRANSITIONS = [
    {"trigger": "start", "source": "idle", "dest": "selecting"},

    # Story selection
    {"trigger": "dispatch", "source": "selecting", "dest": "invoking"},
    {"trigger": "nothing_left", "source": "selecting", "dest": "succeeded"},
    {"trigger": "exhaust", "source": "selecting", "dest": "exhausted"},

    # Oracle outcomes
    {"trigger": "all_done", "source": "invoking", "dest": "succeeded"},
    {"trigger": "story_done", "source": "invoking", "dest": "committing"},
    {"trigger": "blocked", "source": "invoking", "dest": "failed"},
    {"trigger": "no_signal", "source": "invoking", "dest": "checkpointing"},

    # After the checkpoint
    {"trigger": "oracle_failed", "source": "checkpointing", "dest": "failed"},
    {"trigger": "next_iteration", "source": ["committing", "checkpointing"], "dest": "selecting"},

    # Errors outside the oracle's control (git, prd.json, prompt.md)
    {"trigger": "abort", "source": _ACTIVE, "dest": "failed"},
]


class RunFSM:
    """State machine for a single storyloop run.

    Wraps the transitions library and logs every transition. The optional
    on_transition callback(from_state, to_state, trigger) lets the caller
    record transitions in its run log.
    """

    def __init__(self, on_transition: Callable[[str, str, str], None] | None = None):
        self.on_transition = on_transition
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,  # Only explicit transitions
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.debug(f"[FSM] {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)
