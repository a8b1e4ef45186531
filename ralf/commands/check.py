"""
ralf check - Report whether every story in a story set passes.

Exit code 0 when complete, 1 otherwise, so it can gate scripts.
"""

from pathlib import Path

from ralf.lib.config import RalfConfig
from ralf.lib.errors import EXIT_INCOMPLETE, EXIT_OK
from ralf.pm.stories import StoryStore


def cmd_check(args, config: RalfConfig, prd_path: Path) -> int:
    store = StoryStore.load(prd_path)
    counts = store.counts()
    failing = counts["total"] - counts["passing"]

    print(f"PRD Status: {prd_path.name}")
    print("=" * 44)
    print()
    for story in store.stories:
        print(f"{story.id}: {story.title} [{'PASS' if story.passes else 'FAIL'}]")
    print()
    print("=" * 44)
    print(f"Progress: {counts['passing']}/{counts['total']} passing ({failing} remaining)")
    print()

    if failing == 0:
        print("STATUS: COMPLETE - All stories passing!")
        return EXIT_OK

    print("STATUS: IN PROGRESS")
    next_story = store.find_next_eligible()
    if next_story:
        print(f"Next story: {next_story.id}: {next_story.title}")
    else:
        print(f"No eligible stories ({counts['blocked']} blocked)")
    return EXIT_INCOMPLETE
