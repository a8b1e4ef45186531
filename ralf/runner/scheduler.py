"""
Story scheduler.

Selects the next story (or batch of stories) to execute. Selection is
deterministic: eligible stories are stably sorted by priority, so ties keep
their declaration order in prd.json.

Known limitation: the parallel mode only avoids batching stories whose
targetFiles hints overlap. Stories with inaccurate or missing hints can still
produce conflicting edits when run concurrently.
"""

import logging

from ralf.lib.constants import (
    DEFAULT_MAX_PARALLEL,
    MODE_FULL_PARALLEL,
    MODE_PARALLEL,
    MODE_SEQUENTIAL,
)
from ralf.lib.errors import ReorderRejected
from ralf.pm.models import Story

logger = logging.getLogger(__name__)


def eligible_stories(stories: list[Story]) -> list[Story]:
    """Stories that neither pass nor are blocked, in priority order."""
    candidates = [s for s in stories if s.is_eligible]
    # sorted() is stable: equal priorities keep declaration order
    return sorted(candidates, key=lambda s: s.priority)


def _disjoint_batch(ordered: list[Story], limit: int) -> list[Story]:
    """Greedy batch from the head with pairwise disjoint targetFiles."""
    batch = [ordered[0]]
    claimed = set(ordered[0].target_files)
    for story in ordered[1:]:
        if len(batch) >= limit:
            break
        files = set(story.target_files)
        if files & claimed:
            continue
        batch.append(story)
        claimed |= files
    return batch


def select_stories(stories: list[Story], mode: str = MODE_SEQUENTIAL,
                   max_parallel: int = DEFAULT_MAX_PARALLEL) -> list[Story]:
    """Select the stories to run next.

    Args:
        stories: All stories in declaration order
        mode: sequential, parallel or full-parallel
        max_parallel: Batch size limit for parallel mode

    Returns:
        Stories to execute this iteration. Empty when nothing is eligible.
    """
    ordered = eligible_stories(stories)
    if not ordered:
        return []

    if mode == MODE_FULL_PARALLEL:
        return ordered
    if mode == MODE_PARALLEL:
        return _disjoint_batch(ordered, max(1, max_parallel))
    if mode != MODE_SEQUENTIAL:
        logger.warning(f"Unknown execution mode '{mode}', scheduling sequentially")
    return ordered[:1]


def next_story(stories: list[Story]) -> Story | None:
    """Head of the eligible queue, or None."""
    selected = select_stories(stories, MODE_SEQUENTIAL)
    return selected[0] if selected else None


def _order_key(priorities: dict[str, int], positions: dict[str, int], story_id: str) -> tuple[int, int]:
    return priorities[story_id], positions[story_id]


def validate_reorder(stories: list[Story], proposals: list[dict]) -> dict[str, int]:
    """Check evaluator reorder proposals against declared dependencies.

    Stories are never moved in the list; only their priority changes. A
    proposal is rejected if it moves an unfinished prerequisite after a story
    that depends on it. Ties are ordered by declaration position.

    Args:
        stories: Current stories in declaration order
        proposals: [{"storyId": ..., "priority": ...}, ...]

    Returns:
        Mapping of story ID -> new priority for the proposed changes

    Raises:
        ReorderRejected: If a proposal is malformed or breaks precedence
    """
    by_id = {s.id: s for s in stories}
    positions = {s.id: i for i, s in enumerate(stories)}
    changes: dict[str, int] = {}

    for proposal in proposals:
        story_id = proposal.get("storyId")
        priority = proposal.get("priority")
        if story_id not in by_id:
            raise ReorderRejected(f"Unknown story in reorder proposal: {story_id}")
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise ReorderRejected(f"Invalid priority for {story_id}: {priority!r}")
        changes[story_id] = priority

    current = {s.id: s.priority for s in stories}
    priorities = {s.id: changes.get(s.id, s.priority) for s in stories}

    for story in stories:
        for prereq_id in story.depends_on:
            prereq = by_id.get(prereq_id)
            if prereq is None or prereq.passes:
                continue
            # Violations already present in prd.json are not the proposal's fault
            if _order_key(current, positions, prereq_id) > _order_key(current, positions, story.id):
                continue
            if _order_key(priorities, positions, prereq_id) > _order_key(priorities, positions, story.id):
                raise ReorderRejected(
                    f"{story.id} would run before its prerequisite {prereq_id}"
                )

    return changes
