"""
ralf stop-hook - Keep a Claude Code session looping while a Ralf loop is active.

Registered as the session's Stop hook. Claude Code pipes the hook input
({"transcript_path": ...}) on stdin. Printing {"decision": "block", ...}
feeds the loop prompt back in as the next turn; printing nothing lets the
session end. In this mode the session itself is the executor and updates
prd.json directly, so the hook only decides whether to continue.
"""

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ralf.lib.completion import is_promise_fulfilled
from ralf.lib.config import RalfConfig
from ralf.lib.errors import ConfigError
from ralf.lib.transcript import last_assistant_text
from ralf.pm.stories import StoryStore
from ralf.runner.locking import project_lock
from ralf.runner.loop_state import LoopStateStore

logger = logging.getLogger(__name__)


@dataclass
class StopDecision:
    """What the hook tells Claude Code."""
    block: bool
    message: str = ""                   # Shown to the user when the loop ends
    reason: str = ""                    # Next prompt when blocking
    system_message: str = ""

    def to_output(self) -> Optional[dict]:
        if not self.block:
            return None
        return {"decision": "block", "reason": self.reason, "systemMessage": self.system_message}


def _end(state_store: LoopStateStore, message: str, warning: bool = False) -> StopDecision:
    if warning:
        logger.warning(message)
        print(f"Warning: {message}", file=sys.stderr)
    state_store.clear()
    return StopDecision(block=False, message="" if warning else message)


def decide(state_store: LoopStateStore, project_dir: Path, hook_input: dict) -> StopDecision:
    """Decide whether the session should run another iteration."""
    if not state_store.exists():
        return StopDecision(block=False)

    state = state_store.current()
    if state is None:
        return StopDecision(block=False)

    if state.should_stop_for_max_iterations():
        return _end(state_store, f"Ralf loop: Max iterations ({state.max_iterations}) reached.")

    transcript = hook_input.get("transcript_path")
    if not transcript or not Path(transcript).is_file():
        return _end(state_store, "Transcript file not found", warning=True)

    output = last_assistant_text(Path(transcript))
    if not output.strip():
        return _end(state_store, "Could not extract assistant output", warning=True)

    if is_promise_fulfilled(output, state.completion_promise):
        return _end(state_store, f"Ralf loop: Detected <promise>{state.completion_promise}</promise> - completing!")

    try:
        store = StoryStore.load(project_dir / state.prd_path)
    except ConfigError as e:
        # The agent may be mid-edit on prd.json; keep looping and let it fix the file
        logger.warning(f"Could not read story set: {e}")
        store = None
    if store is not None and store.all_pass():
        return _end(state_store, "Ralf loop: All stories in prd.json are passing - auto-completing!")

    if not state.prompt:
        return _end(state_store, "No prompt in state file", warning=True)

    next_iteration = state_store.tick()
    remaining = ""
    if state.max_iterations > 0:
        remaining = f" | {state.max_iterations - next_iteration + 1} iterations remaining"

    return StopDecision(
        block=True,
        reason=state.prompt,
        system_message=(
            f"Ralf iteration {next_iteration}{remaining} | To complete: output "
            f"<promise>{state.completion_promise}</promise> OR mark all prd.json stories as passes:true"
        ),
    )


def cmd_stop_hook(args, config: RalfConfig) -> int:
    raw = sys.stdin.read()
    try:
        hook_input = json.loads(raw) if raw.strip() else {}
    except json.JSONDecodeError:
        logger.warning("Stop hook input is not valid JSON")
        hook_input = {}
    if not isinstance(hook_input, dict):
        hook_input = {}

    state_store = LoopStateStore(config.state_file)
    if not state_store.exists():
        return 0

    with project_lock(config.project_dir):
        decision = decide(state_store, config.project_dir, hook_input)

    output = decision.to_output()
    if output:
        print(json.dumps(output))
    elif decision.message:
        print(decision.message)
    return 0
