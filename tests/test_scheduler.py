"""Tests for ralf.runner.scheduler."""

import pytest

from ralf.lib.errors import ReorderRejected
from ralf.pm.models import Story
from ralf.runner.scheduler import (
    eligible_stories,
    next_story,
    select_stories,
    validate_reorder,
)


def _s(story_id, priority, passes=False, blocked=None, files=(), depends=()):
    return Story(id=story_id, title=story_id, priority=priority, passes=passes,
                 blocked_reason=blocked, target_files=list(files), depends_on=list(depends))


class TestEligibility:
    """Tests for eligible_stories."""

    def test_excludes_passing_and_blocked(self):
        stories = [_s("US-1", 1, passes=True), _s("US-2", 2, blocked="stuck"), _s("US-3", 3)]
        assert [s.id for s in eligible_stories(stories)] == ["US-3"]

    def test_sorted_by_priority(self):
        stories = [_s("US-1", 3), _s("US-2", 1), _s("US-3", 2)]
        assert [s.id for s in eligible_stories(stories)] == ["US-2", "US-3", "US-1"]


class TestSequential:
    """Sequential mode picks exactly one story."""

    def test_lowest_priority_first(self):
        stories = [_s("US-1", 2), _s("US-2", 1)]
        assert next_story(stories).id == "US-2"

    def test_ties_keep_declaration_order(self):
        stories = [_s("US-1", 1), _s("US-2", 1), _s("US-3", 1)]
        picks = {next_story(stories).id for _ in range(5)}
        assert picks == {"US-1"}

    def test_skips_blocked_head(self):
        stories = [_s("US-1", 1, blocked="Failed 3/3 attempts: x"), _s("US-2", 2)]
        assert next_story(stories).id == "US-2"

    def test_none_when_nothing_eligible(self):
        assert next_story([_s("US-1", 1, passes=True)]) is None
        assert select_stories([]) == []


class TestParallel:
    """Parallel mode batches stories with disjoint targetFiles."""

    def test_batches_disjoint_files(self):
        stories = [
            _s("US-1", 1, files=["a.py"]),
            _s("US-2", 2, files=["b.py"]),
            _s("US-3", 3, files=["c.py"]),
        ]
        batch = select_stories(stories, "parallel", max_parallel=3)
        assert [s.id for s in batch] == ["US-1", "US-2", "US-3"]

    def test_skips_overlapping_files(self):
        stories = [
            _s("US-1", 1, files=["a.py", "shared.py"]),
            _s("US-2", 2, files=["shared.py"]),
            _s("US-3", 3, files=["c.py"]),
        ]
        batch = select_stories(stories, "parallel", max_parallel=3)
        assert [s.id for s in batch] == ["US-1", "US-3"]

    def test_respects_max_parallel(self):
        stories = [_s(f"US-{i}", i, files=[f"{i}.py"]) for i in range(1, 6)]
        batch = select_stories(stories, "parallel", max_parallel=2)
        assert [s.id for s in batch] == ["US-1", "US-2"]

    def test_head_alone_when_nothing_fits(self):
        stories = [_s("US-1", 1, files=["a.py"]), _s("US-2", 2, files=["a.py"])]
        assert [s.id for s in select_stories(stories, "parallel")] == ["US-1"]

    def test_empty_hints_count_as_disjoint(self):
        stories = [_s("US-1", 1), _s("US-2", 2)]
        assert len(select_stories(stories, "parallel")) == 2


class TestFullParallel:
    def test_returns_all_eligible(self):
        stories = [_s("US-1", 2), _s("US-2", 1, passes=True), _s("US-3", 1)]
        assert [s.id for s in select_stories(stories, "full-parallel")] == ["US-3", "US-1"]


class TestUnknownMode:
    def test_falls_back_to_sequential(self, caplog):
        stories = [_s("US-1", 1), _s("US-2", 2)]
        assert [s.id for s in select_stories(stories, "bogus")] == ["US-1"]
        assert "Unknown execution mode 'bogus'" in caplog.text


class TestValidateReorder:
    """Reorder proposals are checked against dependsOn."""

    def test_accepts_valid_proposal(self):
        stories = [_s("US-1", 1), _s("US-2", 2), _s("US-3", 3)]
        changes = validate_reorder(stories, [{"storyId": "US-3", "priority": 0}])
        assert changes == {"US-3": 0}

    def test_rejects_unknown_story(self):
        with pytest.raises(ReorderRejected, match="Unknown story"):
            validate_reorder([_s("US-1", 1)], [{"storyId": "US-9", "priority": 1}])

    def test_rejects_non_integer_priority(self):
        with pytest.raises(ReorderRejected, match="Invalid priority"):
            validate_reorder([_s("US-1", 1)], [{"storyId": "US-1", "priority": "high"}])
        with pytest.raises(ReorderRejected):
            validate_reorder([_s("US-1", 1)], [{"storyId": "US-1", "priority": True}])

    def test_rejects_dependent_before_prerequisite(self):
        stories = [_s("US-1", 1), _s("US-2", 2, depends=["US-1"])]
        with pytest.raises(ReorderRejected, match="US-2 would run before its prerequisite US-1"):
            validate_reorder(stories, [{"storyId": "US-2", "priority": 0}])

    def test_rejects_tie_that_puts_dependent_first(self):
        # Equal priority: declaration order decides, US-2 is declared first
        stories = [_s("US-2", 2, depends=["US-1"]), _s("US-1", 1)]
        with pytest.raises(ReorderRejected):
            validate_reorder(stories, [{"storyId": "US-1", "priority": 2}])

    def test_ignores_finished_prerequisites(self):
        stories = [_s("US-1", 1, passes=True), _s("US-2", 2, depends=["US-1"])]
        assert validate_reorder(stories, [{"storyId": "US-2", "priority": 0}]) == {"US-2": 0}

    def test_ignores_existing_violations(self):
        stories = [_s("US-1", 5), _s("US-2", 1, depends=["US-1"]), _s("US-3", 3)]
        assert validate_reorder(stories, [{"storyId": "US-3", "priority": 0}]) == {"US-3": 0}
