"""
ralf unblock - Make a blocked story eligible again.
"""

from pathlib import Path

from ralf.lib.config import RalfConfig
from ralf.pm.stories import StoryStore


def cmd_unblock(args, config: RalfConfig, prd_path: Path) -> int:
    store = StoryStore.load(prd_path)
    story = store.get(args.story)
    if not story.is_blocked:
        print(f"{story.id} is not blocked")
        return 0

    reason = story.blocked_reason
    store.unblock(story.id)
    print(f"Unblocked {story.id} (was: {reason})")
    print(f"Retry budget reset to {store.settings.max_retries} attempts")
    return 0
