"""Loop controller phase machine using transitions library.

Each iteration walks the controller through explicit phases:

    idle -> selecting -> dispatching -> awaiting_result -> applying
         -> evaluating (optional) -> idle (next iteration)

Any phase that can discover a terminal condition may `terminate`.
`terminated` has no outgoing transitions: a new loop needs a fresh
`ralf start` and a fresh controller.
"""

import logging

from transitions import Machine

logger = logging.getLogger(__name__)


STATES = [
    "idle",
    "selecting",
    "dispatching",
    "awaiting_result",
    "applying",
    "evaluating",
    "terminated",
]

TERMINAL_STATES = {"terminated"}

TRANSITIONS = [
    {"trigger": "select", "source": "idle", "dest": "selecting"},
    {"trigger": "dispatch", "source": "selecting", "dest": "dispatching"},
    {"trigger": "await_result", "source": "dispatching", "dest": "awaiting_result"},
    {"trigger": "apply", "source": "awaiting_result", "dest": "applying"},
    {"trigger": "evaluate", "source": "applying", "dest": "evaluating"},
    {"trigger": "finish_iteration", "source": ["applying", "evaluating"], "dest": "idle"},

    # idle: state file vanished. selecting: completed or stalled.
    # applying/evaluating: promise, max iterations, cancelled mid-run.
    {"trigger": "terminate", "source": ["idle", "selecting", "applying", "evaluating"], "dest": "terminated"},
]


class IterationFSM:
    """Phase machine for one LoopController.

    Phases live in memory only; everything that must survive a process
    restart is in the loop state and story set files.
    """

    def __init__(self, name: str):
        self.name = name
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="idle",
            auto_transitions=False,
            send_event=True,
            after_state_change="_log_change",
        )

    def _log_change(self, event) -> None:
        logger.debug(
            f"[FSM] {self.name}: {event.transition.source} -> {event.transition.dest} ({event.event.name})"
        )

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES
