"""
ralf cancel - Remove the loop state so the loop stops at its next checkpoint.

Deliberately takes no project lock: a running `ralf run` holds it for the
whole run, and cancelling must work while it does.
"""

from ralf.lib.config import RalfConfig
from ralf.runner.loop_state import LoopStateStore


def cmd_cancel(args, config: RalfConfig) -> int:
    state_store = LoopStateStore(config.state_file)
    if not state_store.exists():
        print("No active Ralf loop found.")
        return 0

    state = state_store.current()
    state_store.clear()
    if state:
        print(f"Cancelled Ralf loop (was at iteration {state.iteration}).")
    else:
        print("Removed corrupted Ralf loop state.")
    return 0
