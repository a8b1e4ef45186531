"""
ralf update - Set a story's pass status by hand.
"""

from pathlib import Path

from ralf.lib.config import RalfConfig
from ralf.lib.errors import EXIT_CONFIG
from ralf.pm.stories import StoryStore

PASS_VALUES = ("pass", "true", "1")
FAIL_VALUES = ("fail", "false", "0")


def parse_status(value: str) -> bool | None:
    """pass/true/1 -> True, fail/false/0 -> False, anything else -> None."""
    value = value.strip().lower()
    if value in PASS_VALUES:
        return True
    if value in FAIL_VALUES:
        return False
    return None


def cmd_update(args, config: RalfConfig, prd_path: Path) -> int:
    passes = parse_status(args.status)
    if passes is None:
        print(f"ERROR: Status must be 'pass' or 'fail', got: {args.status}")
        return EXIT_CONFIG

    store = StoryStore.load(prd_path)
    story = store.set_passes(args.story, passes, args.notes)
    counts = store.counts()

    print(f"Updated {story.id}: passes={'true' if story.passes else 'false'}")
    print(f"Progress: {counts['passing']}/{counts['total']} stories passing")
    if store.all_pass():
        print()
        print("All stories complete!")
    return 0
