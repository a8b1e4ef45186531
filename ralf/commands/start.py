"""
ralf start - Validate a story set and activate a loop for it.
"""

import logging

from ralf.lib.config import RalfConfig
from ralf.lib.constants import DEFAULT_COMPLETION_PROMISE, LOOP_PROMPT, PROGRESS_FILE
from ralf.lib.errors import EXIT_CONFIG, AlreadyActiveError
from ralf.lib.progress import ensure_progress_file
from ralf.pm.stories import StoryStore
from ralf.runner.locking import project_lock
from ralf.runner.loop_state import LoopState, LoopStateStore

logger = logging.getLogger(__name__)


def cmd_start(args, config: RalfConfig) -> int:
    """Create the loop state for a story set."""
    if args.max_iterations < 0:
        print("ERROR: --max-iterations must be 0 (unlimited) or a positive integer")
        return EXIT_CONFIG

    prd_path = config.project_dir / args.prd
    store = StoryStore.load(prd_path)
    story_set = store.story_set

    state = LoopState(
        prd_path=args.prd,
        max_iterations=args.max_iterations,
        execution_mode=args.mode or story_set.settings.execution_mode,
        completion_promise=args.completion_promise or DEFAULT_COMPLETION_PROMISE,
        project=story_set.project,
        branch=story_set.branch_name,
        prompt=LOOP_PROMPT.format(prd_path=args.prd),
    )

    state_store = LoopStateStore(config.state_file)
    with project_lock(config.project_dir):
        try:
            state_store.start(state)
        except AlreadyActiveError as e:
            print(f"ERROR: {e}")
            print("  Run 'ralf cancel' first to stop the existing loop")
            return e.exit_code
        archived = store.archive_previous_run(config.project_dir)

    logger.info(f"Started loop for {prd_path} (mode={state.execution_mode}, max={state.max_iterations})")

    counts = store.counts()
    max_msg = str(state.max_iterations) if state.max_iterations > 0 else "unlimited"

    print("Ralf Autonomous Loop Activated")
    print()
    print(f"Project:        {story_set.project}")
    print(f"Branch:         {story_set.branch_name}")
    print(f"PRD:            {args.prd}")
    if story_set.description:
        print(f"Description:    {story_set.description}")
    print()
    print(f"Stories:        {counts['passing']}/{counts['total']} passing "
          f"({counts['total'] - counts['passing']} remaining)")
    print(f"Mode:           {state.execution_mode}")
    print(f"Iteration:      {state.iteration}")
    print(f"Max iterations: {max_msg}")
    print(f"Completion:     Auto (all stories pass) OR <promise>{state.completion_promise}</promise>")

    if archived:
        print()
        print(f"Archived previous run to {archived.relative_to(config.project_dir)}")

    if ensure_progress_file(config.project_dir / PROGRESS_FILE):
        print()
        print(f"Created {PROGRESS_FILE} for tracking")

    print()
    print("---")
    print()
    print(state.prompt)
    return 0
