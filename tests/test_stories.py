"""Tests for ralf.pm.stories (StoryStore)."""

import json
import pytest
from pathlib import Path

from ralf.lib.errors import ConfigError, StoryNotFound, StorySetNotFound
from ralf.pm.models import AttemptOutcome, StorySet
from ralf.pm.stories import StoryStore, parse_story_set


def _story(story_id, priority, passes=False, **extra):
    data = {"id": story_id, "title": f"Story {story_id}", "priority": priority, "passes": passes}
    data.update(extra)
    return data


def _write_prd(path: Path, stories, **settings) -> Path:
    data = {"project": "Demo", "branchName": "ralf/demo", "userStories": stories}
    if settings:
        data["settings"] = settings
    path.write_text(json.dumps(data, indent=2))
    return path


class TestLoad:
    """Tests for StoryStore.load."""

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(StorySetNotFound) as exc_info:
            StoryStore.load(tmp_path / "prd.json")
        assert exc_info.value.exit_code == 2

    def test_invalid_json_raises_config_error(self, tmp_path):
        path = tmp_path / "prd.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError) as exc_info:
            StoryStore.load(path)
        assert "Invalid JSON" in str(exc_info.value)

    def test_missing_required_field_raises(self, tmp_path):
        path = _write_prd(tmp_path / "prd.json", [{"id": "US-1", "title": "No priority", "passes": False}])
        with pytest.raises(ConfigError) as exc_info:
            StoryStore.load(path)
        assert "priority" in str(exc_info.value)

    def test_duplicate_ids_rejected(self, tmp_path):
        path = _write_prd(tmp_path / "prd.json", [_story("US-1", 1), _story("US-1", 2)])
        with pytest.raises(ConfigError) as exc_info:
            StoryStore.load(path)
        assert "Duplicate story id: US-1" in str(exc_info.value)

    def test_defaults_for_optional_fields(self, tmp_path):
        path = tmp_path / "prd.json"
        path.write_text(json.dumps({"userStories": [_story("US-1", 1)]}))
        store = StoryStore.load(path)
        assert store.story_set.project == "Unknown"
        assert store.story_set.branch_name == "ralf/feature"
        assert store.settings.max_retries == 3
        assert store.settings.execution_mode == "sequential"

    def test_unknown_story_keys_survive_save(self, tmp_path):
        path = _write_prd(tmp_path / "prd.json", [_story("US-1", 1, notes="keep me")])
        store = StoryStore.load(path)
        store.save()
        saved = json.loads(path.read_text())
        assert saved["userStories"][0]["notes"] == "keep me"

    def test_unknown_document_and_settings_keys_survive_save(self, tmp_path):
        path = tmp_path / "prd.json"
        path.write_text(json.dumps({
            "version": 2,
            "userStories": [_story("US-1", 1)],
            "settings": {"maxRetries": 2, "customFlag": True},
        }))
        store = StoryStore.load(path)
        store.set_passes("US-1", True)

        saved = json.loads(path.read_text())
        assert saved["version"] == 2
        assert saved["settings"]["customFlag"] is True
        assert saved["settings"]["maxRetries"] == 2
        assert saved["userStories"][0]["passes"] is True


class TestRoundTrip:
    """Writing and reloading a story set preserves every field."""

    def test_round_trip(self, tmp_path):
        path = _write_prd(
            tmp_path / "prd.json",
            [
                _story("US-1", 2, description="First", acceptanceCriteria=["works"],
                       targetFiles=["a.py"], dependsOn=[]),
                _story("US-2", 1, passes=True, dependsOn=["US-1"], custom={"x": 1}),
            ],
            maxRetries=2, executionMode="parallel", maxParallel=4,
        )
        store = StoryStore.load(path)
        store.mark_result("US-1", AttemptOutcome(iteration=1, status="failure", errors=["boom"],
                                                 duration_ms=10, tokens_consumed=5))
        reloaded = StoryStore.load(path)
        assert reloaded.story_set == store.story_set

    def test_model_round_trip(self):
        data = {
            "project": "P",
            "branchName": "ralf/p",
            "description": "",
            "userStories": [_story("US-1", 1, blockedReason="stuck", retryCount=3)],
        }
        story_set = parse_story_set(data)
        assert StorySet.from_dict(story_set.to_dict()) == story_set


class TestMarkResult:
    """Tests for StoryStore.mark_result."""

    @pytest.fixture
    def store(self, tmp_path):
        path = _write_prd(tmp_path / "prd.json", [_story("US-1", 1), _story("US-2", 2)], maxRetries=3)
        return StoryStore.load(path)

    def test_success_marks_passing(self, store):
        story = store.mark_result("US-1", AttemptOutcome(
            iteration=1, status="success", started_at="2025-01-01T00:00:00Z",
            completed_at="2025-01-01T00:01:00Z", duration_ms=60000, tokens_consumed=1200,
        ))
        assert story.passes is True
        assert story.metrics.started_at == "2025-01-01T00:00:00Z"
        assert story.metrics.completed_at == "2025-01-01T00:01:00Z"
        assert story.metrics.duration_ms == 60000
        assert story.metrics.tokens_consumed == 1200

    def test_result_is_persisted(self, store):
        store.mark_result("US-1", AttemptOutcome(iteration=1, status="success"))
        reloaded = StoryStore.load(store.path)
        assert reloaded.get("US-1").passes is True
        assert len(reloaded.get("US-1").metrics.attempts) == 1

    def test_same_attempt_applied_twice_is_recorded_once(self, store):
        outcome = AttemptOutcome(iteration=1, status="failure", errors=["tests failed"], duration_ms=5)
        store.mark_result("US-1", outcome)
        store.mark_result("US-1", outcome)
        story = StoryStore.load(store.path).get("US-1")
        assert len(story.metrics.attempts) == 1
        assert story.retry_count == 1
        assert story.metrics.duration_ms == 5

    def test_failures_block_after_max_retries(self, store):
        for iteration in (1, 2):
            story = store.mark_result("US-1", AttemptOutcome(iteration=iteration, status="failure",
                                                             errors=["tests failed"]))
            assert not story.is_blocked

        story = store.mark_result("US-1", AttemptOutcome(iteration=3, status="failure", errors=["lint failed"]))
        assert story.retry_count == 3
        assert story.blocked_reason == "Failed 3/3 attempts: lint failed"
        assert store.find_next_eligible().id == "US-2"

    def test_blocked_status_blocks_immediately(self, store):
        story = store.mark_result("US-1", AttemptOutcome(iteration=1, status="blocked",
                                                         blocked_reason="Needs API key"))
        assert story.blocked_reason == "Needs API key"
        assert story.retry_count == 0

    def test_attempts_are_appended_in_order(self, store):
        store.mark_result("US-1", AttemptOutcome(iteration=1, status="failure"))
        store.mark_result("US-1", AttemptOutcome(iteration=2, status="success"))
        attempts = store.get("US-1").metrics.attempts
        assert [(a.iteration, a.status) for a in attempts] == [(1, "failure"), (2, "success")]

    def test_unknown_story_raises(self, store):
        with pytest.raises(StoryNotFound):
            store.mark_result("US-9", AttemptOutcome(iteration=1, status="success"))


class TestQueries:
    """Tests for all_pass, counts and find_next_eligible."""

    def test_all_pass_true_when_every_story_passes(self, tmp_path):
        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [_story("US-1", 1, True), _story("US-2", 2, True)]))
        assert store.all_pass() is True

    def test_all_pass_false_with_blocked_story(self, tmp_path):
        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [
            _story("US-1", 1, True),
            _story("US-2", 2, False, blockedReason="stuck"),
        ]))
        assert store.all_pass() is False

    def test_counts(self, tmp_path):
        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [
            _story("US-1", 1, True),
            _story("US-2", 2, False, blockedReason="stuck"),
            _story("US-3", 3),
        ]))
        assert store.counts() == {"total": 3, "passing": 1, "blocked": 1, "remaining": 1}

    def test_find_next_eligible_lowest_priority(self, tmp_path):
        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [_story("US-1", 2), _story("US-2", 1)]))
        assert store.find_next_eligible().id == "US-2"

    def test_find_next_eligible_none_when_done(self, tmp_path):
        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [_story("US-1", 1, True)]))
        assert store.find_next_eligible() is None


class TestManualMutations:
    """Tests for set_passes, unblock and apply_priorities."""

    @pytest.fixture
    def store(self, tmp_path):
        return StoryStore.load(_write_prd(tmp_path / "prd.json", [
            _story("US-1", 1, blockedReason="Failed 3/3 attempts: x", retryCount=3),
            _story("US-2", 2),
        ]))

    def test_set_passes_with_notes(self, store):
        store.set_passes("US-2", True, "done by hand")
        saved = json.loads(store.path.read_text())["userStories"][1]
        assert saved["passes"] is True
        assert saved["notes"] == "done by hand"

    def test_set_passes_clears_block(self, store):
        story = store.set_passes("US-1", True)
        assert not story.is_blocked

    def test_unblock_resets_retries(self, store):
        story = store.unblock("US-1")
        assert story.blocked_reason is None
        assert story.retry_count == 0
        assert StoryStore.load(store.path).find_next_eligible().id == "US-1"

    def test_apply_priorities_keeps_order(self, store):
        store.apply_priorities({"US-2": 0})
        reloaded = StoryStore.load(store.path)
        assert [s.id for s in reloaded.stories] == ["US-1", "US-2"]
        assert reloaded.get("US-2").priority == 0


class TestArchivePreviousRun:
    """Tests for archiving when the branch changes."""

    def test_records_branch_on_first_run(self, tmp_path):
        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [_story("US-1", 1)]))
        assert store.archive_previous_run(tmp_path) is None
        assert (tmp_path / ".ralf" / "last-branch").read_text().strip() == "ralf/demo"

    def test_same_branch_does_not_archive(self, tmp_path):
        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [_story("US-1", 1)]))
        (tmp_path / ".ralf").mkdir()
        (tmp_path / ".ralf" / "last-branch").write_text("ralf/demo\n")
        assert store.archive_previous_run(tmp_path) is None
        assert not (tmp_path / "archive").exists()

    def test_branch_change_archives_previous_story_set(self, tmp_path):
        old = _write_prd(tmp_path / "old.json", [_story("OLD-1", 1, passes=True)])
        StoryStore.load(old).archive_previous_run(tmp_path)
        (tmp_path / ".ralf" / "last-branch").write_text("ralf/old-feature\n")
        (tmp_path / "progress.txt").write_text("old progress")

        store = StoryStore.load(_write_prd(tmp_path / "prd.json", [_story("US-1", 1)]))
        archive_dir = store.archive_previous_run(tmp_path)

        assert archive_dir is not None
        assert archive_dir.name.endswith("-old-feature")
        archived = json.loads((archive_dir / "prd.json").read_text())
        assert [s["id"] for s in archived["userStories"]] == ["OLD-1"]
        snapshot = json.loads((tmp_path / ".ralf" / "last-prd.json").read_text())
        assert [s["id"] for s in snapshot["userStories"]] == ["US-1"]
        assert (archive_dir / "progress.txt").read_text() == "old progress"
        assert not (tmp_path / "progress.txt").exists()
        assert (tmp_path / ".ralf" / "last-branch").read_text().strip() == "ralf/demo"
