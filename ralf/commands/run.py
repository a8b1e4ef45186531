"""
ralf run - Drive the active loop with an external executor.

Holds the project lock for the whole run so two drivers never interleave
iterations. `ralf cancel` still works while a run is in progress.
"""

import logging
import shlex

from ralf.agents.evaluator import CommandEvaluator
from ralf.agents.executor import CommandExecutor
from ralf.agents.scripted import ScriptedExecutor
from ralf.hooks import HookDispatcher
from ralf.lib.config import RalfConfig
from ralf.lib.constants import RALF_DIR
from ralf.lib.errors import EXIT_CONFIG
from ralf.runner.locking import project_lock
from ralf.runner.loop_state import LoopStateStore
from ralf.workflow.engine import IterationOutcome, LoopController

logger = logging.getLogger(__name__)


def build_executor(args, config: RalfConfig):
    if args.script:
        return ScriptedExecutor.from_file(config.project_dir / args.script)
    command = shlex.split(args.executor_cmd) if args.executor_cmd else config.executor_command
    return CommandExecutor(
        command,
        cwd=config.project_dir,
        timeout=config.executor_timeout,
        log_dir=config.project_dir / RALF_DIR / "logs",
    )


def build_controller(args, config: RalfConfig) -> LoopController:
    evaluator = None
    if config.evaluator_command:
        evaluator = CommandEvaluator(config.evaluator_command, config.project_dir, config.evaluator_timeout)
    return LoopController(
        config.project_dir,
        LoopStateStore(config.state_file),
        build_executor(args, config),
        HookDispatcher.from_config(config),
        evaluator,
    )


def _print_iteration(outcome: IterationOutcome) -> None:
    if not outcome.story_ids:
        return
    statuses = ", ".join(f"{r.story_id}={r.status}" for r in outcome.results)
    print(f"Iteration {outcome.iteration}: {statuses}")


def cmd_run(args, config: RalfConfig) -> int:
    """Run iterations until the loop terminates (or one, with --once)."""
    if args.script and args.executor_cmd:
        print("ERROR: --script and --executor-cmd are mutually exclusive")
        return EXIT_CONFIG

    if not LoopStateStore(config.state_file).exists():
        print("ERROR: No active Ralf loop. Start one with 'ralf start'.")
        return EXIT_CONFIG

    controller = build_controller(args, config)
    logger.info(f"Driving loop with {type(controller.executor).__name__}")

    with project_lock(config.project_dir):
        while True:
            outcome = controller.run_iteration()
            _print_iteration(outcome)
            if outcome.terminated or args.once:
                break

    if not outcome.terminated:
        print(f"Loop continues at iteration {outcome.iteration + 1}")
        return 0

    for line in outcome.summary_lines():
        print(line)
    return outcome.exit_code
