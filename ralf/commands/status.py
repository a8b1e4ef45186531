"""
ralf status - Show the active loop and story progress.
"""

from ralf.lib.config import RalfConfig
from ralf.lib.constants import DEFAULT_PRD_PATH
from ralf.lib.errors import StorySetNotFound
from ralf.lib.stats import format_stats_summary, summarize_metrics
from ralf.pm.models import Story
from ralf.pm.stories import StoryStore
from ralf.runner.locking import is_locked
from ralf.runner.loop_state import LoopStateStore


def _story_marker(story: Story) -> str:
    if story.passes:
        return "PASS"
    if story.is_blocked:
        return "BLOCKED"
    return "FAIL"


def cmd_status(args, config: RalfConfig) -> int:
    """Show loop state, per-story status and metrics."""
    state = LoopStateStore(config.state_file).current()

    if state:
        remaining = state.remaining_iterations()
        print("Ralf Loop: ACTIVE")
        print("=" * 60)
        print(f"Project:        {state.project}")
        print(f"Branch:         {state.branch}")
        print(f"PRD:            {state.prd_path}")
        print(f"Mode:           {state.execution_mode}")
        print(f"Iteration:      {state.iteration}")
        print(f"Max iterations: {state.max_iterations if state.max_iterations > 0 else 'unlimited'}"
              + (f" ({remaining} remaining)" if remaining is not None else ""))
        print(f"Promise:        <promise>{state.completion_promise}</promise>")
        print(f"Started:        {state.started_at}")
        if is_locked(config.project_dir):
            print("Driver:         running (project lock held)")
        prd_path = config.project_dir / state.prd_path
    else:
        print("Ralf Loop: inactive")
        print("=" * 60)
        prd_path = config.project_dir / DEFAULT_PRD_PATH

    print()
    try:
        store = StoryStore.load(prd_path)
    except StorySetNotFound:
        print(f"No story set at {prd_path}")
        return 0

    counts = store.counts()
    for story in store.stories:
        line = f"  {story.id}: {story.title} [{_story_marker(story)}]"
        if story.retry_count and not story.passes:
            line += f" (retries: {story.retry_count})"
        print(line)
        if story.is_blocked and not story.passes:
            print(f"      {story.blocked_reason}")

    print()
    print(f"Progress: {counts['passing']}/{counts['total']} passing, "
          f"{counts['blocked']} blocked, {counts['remaining']} remaining")

    summary = summarize_metrics(store.stories)
    if summary.attempts:
        print()
        print("Metrics:")
        for line in format_stats_summary(summary):
            print(line)

    next_story = store.find_next_eligible()
    if next_story:
        print()
        print(f"Next story: {next_story.id} - {next_story.title}")
    return 0
