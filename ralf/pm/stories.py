"""
Story store: the authoritative, crash-consistent copy of story status.

The story set lives in a single JSON file (prd.json by default). Every
mutation is followed by an atomic write-replace so a crash mid-write never
leaves a torn file behind; the next iteration reads exactly what the last
one committed.
"""

import json
import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ralf.lib.constants import (
    ARCHIVE_DIR,
    LAST_BRANCH_FILE,
    LAST_STORY_SET_FILE,
    PROGRESS_FILE,
    STATUS_BLOCKED,
    STATUS_SUCCESS,
)
from ralf.lib.errors import ConfigError, StoryNotFound, StorySetNotFound
from ralf.lib.fileio import atomic_write_json, atomic_write_text
from ralf.lib.validate import ValidationError, validate, validate_before_write
from ralf.pm.models import AttemptOutcome, Story, StorySet
from ralf.runner.scheduler import select_stories

logger = logging.getLogger(__name__)


def parse_story_set(data: dict) -> StorySet:
    """Validate raw prd.json content and build a StorySet.

    Raises:
        ConfigError: On schema violations or duplicate story IDs
    """
    try:
        validate(data, "story_set")
    except ValidationError as e:
        raise ConfigError(f"Invalid story set: {e}") from None

    seen = set()
    for story in data["userStories"]:
        if story["id"] in seen:
            raise ConfigError(f"Duplicate story id: {story['id']}")
        seen.add(story["id"])

    return StorySet.from_dict(data)


class StoryStore:
    """File-backed story set.

    Usage:
        store = StoryStore.load(Path("prd.json"))
        batch = store.find_next_eligible("sequential")
        store.mark_result(batch[0].id, outcome)
    """

    def __init__(self, path: Path, story_set: StorySet):
        self.path = path
        self.story_set = story_set

    @classmethod
    def load(cls, path: Path) -> "StoryStore":
        """Load and validate a story set file.

        Raises:
            StorySetNotFound: If the file doesn't exist
            ConfigError: If the content is not a valid story set
        """
        if not path.exists():
            raise StorySetNotFound(path)
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from None
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid story set in {path}: expected a JSON object")
        return cls(path, parse_story_set(data))

    @property
    def stories(self) -> list[Story]:
        return self.story_set.stories

    @property
    def settings(self):
        return self.story_set.settings

    def get(self, story_id: str) -> Story:
        for story in self.stories:
            if story.id == story_id:
                return story
        raise StoryNotFound(story_id)

    def save(self) -> None:
        """Atomically replace the backing file with the current story set."""
        data = self.story_set.to_dict()
        validate_before_write(data, "story_set", self.path)
        atomic_write_json(self.path, data)

    def reload(self) -> None:
        """Re-read the backing file, discarding in-memory state."""
        self.story_set = StoryStore.load(self.path).story_set

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def next_batch(self, mode: Optional[str] = None) -> list[Story]:
        """Next story batch for the given mode (defaults to the set's own mode)."""
        return select_stories(
            self.stories,
            mode or self.settings.execution_mode,
            self.settings.max_parallel,
        )

    def find_next_eligible(self, mode: Optional[str] = None) -> Optional[Story]:
        """Head of the next batch, or None when nothing is eligible."""
        batch = self.next_batch(mode)
        return batch[0] if batch else None

    def all_pass(self) -> bool:
        """True iff every story passes."""
        return all(s.passes for s in self.stories)

    def blocked_stories(self) -> list[Story]:
        return [s for s in self.stories if s.is_blocked and not s.passes]

    def counts(self) -> dict[str, int]:
        """Tally of passing, failing (still eligible) and blocked stories."""
        passing = sum(1 for s in self.stories if s.passes)
        blocked = len(self.blocked_stories())
        return {
            "total": len(self.stories),
            "passing": passing,
            "blocked": blocked,
            "remaining": len(self.stories) - passing - blocked,
        }

    # ------------------------------------------------------------------
    # Mutations (each one persists)
    # ------------------------------------------------------------------

    def mark_result(self, story_id: str, outcome: AttemptOutcome) -> Story:
        """Record an execution attempt for a story.

        Idempotent per attempt index: applying the same outcome.iteration
        twice leaves the story unchanged the second time.

        Raises:
            StoryNotFound: If story_id is not in the set
        """
        story = self.get(story_id)
        if story.has_attempt(outcome.iteration):
            logger.info(f"Attempt {outcome.iteration} for {story_id} already recorded, skipping")
            return story

        metrics = story.metrics
        metrics.attempts.append(outcome.to_attempt())
        if metrics.started_at is None:
            metrics.started_at = outcome.started_at
        metrics.duration_ms += outcome.duration_ms
        metrics.tokens_consumed += outcome.tokens_consumed

        if outcome.status == STATUS_SUCCESS:
            story.passes = True
            story.blocked_reason = None
            metrics.completed_at = outcome.completed_at
        elif outcome.status == STATUS_BLOCKED:
            story.blocked_reason = outcome.blocked_reason or _last_error(outcome) or "Blocked by executor"
        else:
            story.retry_count += 1
            max_retries = self.settings.max_retries
            if story.retry_count >= max_retries:
                reason = _last_error(outcome) or "execution failed"
                story.blocked_reason = f"Failed {story.retry_count}/{max_retries} attempts: {reason}"

        self.save()
        return story

    def set_passes(self, story_id: str, passes: bool, notes: Optional[str] = None) -> Story:
        """Manually set a story's pass status (and optional notes)."""
        story = self.get(story_id)
        story.passes = passes
        if passes:
            story.blocked_reason = None
        if notes:
            story.extra["notes"] = notes
        self.save()
        return story

    def unblock(self, story_id: str) -> Story:
        """Clear a blocked story so it is scheduled again with a fresh retry budget."""
        story = self.get(story_id)
        story.blocked_reason = None
        story.retry_count = 0
        self.save()
        return story

    def apply_priorities(self, priorities: dict[str, int]) -> None:
        """Change story priorities. Story order in the file never changes."""
        for story_id, priority in priorities.items():
            self.get(story_id).priority = priority
        self.save()

    # ------------------------------------------------------------------
    # Archive
    # ------------------------------------------------------------------

    def archive_previous_run(self, project_dir: Path) -> Optional[Path]:
        """Archive the previous run's progress when the branch changes.

        Compares branchName with .ralf/last-branch. On a change, moves the
        previous run's story set snapshot (.ralf/last-prd.json) and
        progress.txt into archive/<date>-<last-branch>/. Always records the
        current branch and snapshots the current story set for next time.

        Returns:
            The archive directory, or None if nothing was archived
        """
        last_branch_file = project_dir / LAST_BRANCH_FILE
        current = self.story_set.branch_name
        archive_dir = None

        last = last_branch_file.read_text().strip() if last_branch_file.exists() else ""
        progress = project_dir / PROGRESS_FILE
        snapshot = project_dir / LAST_STORY_SET_FILE
        if last and last != current:
            folder = _sanitize_branch(last)
            date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
            archive_dir = project_dir / ARCHIVE_DIR / f"{date}-{folder}"
            archive_dir.mkdir(parents=True, exist_ok=True)
            if snapshot.exists():
                shutil.move(str(snapshot), archive_dir / self.path.name)
            if progress.exists():
                shutil.copy2(progress, archive_dir / PROGRESS_FILE)
                progress.unlink()
            logger.info(f"Archived previous run ({last}) to {archive_dir}")

        atomic_write_text(last_branch_file, current + "\n")
        snapshot.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(self.path, snapshot)
        return archive_dir


def _last_error(outcome: AttemptOutcome) -> str:
    return outcome.errors[-1] if outcome.errors else ""


def _sanitize_branch(branch: str) -> str:
    """Branch name usable as a single directory name (ralf/foo -> foo)."""
    name = branch.split("/", 1)[1] if "/" in branch else branch
    return re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-") or "branch"
