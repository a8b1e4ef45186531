"""Tests for ralf.lib.validate."""

import pytest
from pathlib import Path

from ralf.lib.validate import ValidationError, validate, validate_before_write


class TestValidate:
    def test_valid_story_set(self):
        validate({"userStories": [{"id": "US-1", "title": "t", "priority": 1, "passes": False}]}, "story_set")

    def test_rejects_string_priority(self):
        with pytest.raises(ValidationError) as exc_info:
            validate({"userStories": [{"id": "US-1", "title": "t", "priority": "1", "passes": False}]},
                     "story_set")
        assert exc_info.value.schema_name == "story_set"
        assert exc_info.value.path == "userStories.0.priority"

    def test_rejects_unknown_execution_mode(self):
        with pytest.raises(ValidationError):
            validate({"userStories": [], "settings": {"executionMode": "turbo"}}, "story_set")

    def test_loop_state_requires_positive_iteration(self):
        with pytest.raises(ValidationError):
            validate({"active": True, "iteration": 0, "maxIterations": 0,
                      "completionPromise": "COMPLETE", "prdPath": "prd.json"}, "loop_state")

    def test_execution_result_status_enum(self):
        validate({"storyId": "US-1", "status": "blocked", "blockedReason": "x"}, "execution_result")
        with pytest.raises(ValidationError):
            validate({"storyId": "US-1", "status": "maybe"}, "execution_result")

    def test_unknown_schema(self):
        with pytest.raises(ValidationError, match="Schema file not found"):
            validate({}, "nonexistent")


class TestValidateBeforeWrite:
    def test_error_names_target_file(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_before_write({"userStories": "nope"}, "story_set", Path("/tmp/prd.json"))
        assert "prd.json" in str(exc_info.value)
