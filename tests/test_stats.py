"""Tests for the stats module."""

from ralf.lib.stats import (
    MetricsSummary,
    format_duration,
    format_stats_summary,
    summarize_metrics,
)
from ralf.pm.models import Attempt, Story, StoryMetrics


class TestSummarizeMetrics:
    """Tests for summarize_metrics."""

    def test_empty(self):
        summary = summarize_metrics([])
        assert summary == MetricsSummary(0, 0, 0, 0, 0, 0)

    def test_counts_attempts_by_status(self):
        stories = [
            Story(id="US-1", title="a", priority=1, metrics=StoryMetrics(
                duration_ms=3000, tokens_consumed=100,
                attempts=[Attempt(1, "failure"), Attempt(2, "success")])),
            Story(id="US-2", title="b", priority=2, metrics=StoryMetrics(
                duration_ms=2000, tokens_consumed=50,
                attempts=[Attempt(3, "blocked")])),
        ]
        summary = summarize_metrics(stories)
        assert summary.total_duration_ms == 5000
        assert summary.total_tokens == 150
        assert summary.attempts == 3
        assert summary.successful_attempts == 1
        assert summary.failed_attempts == 1
        assert summary.blocked_attempts == 1


class TestFormatDuration:
    """Tests for format_duration function."""

    def test_seconds(self):
        assert format_duration(45.5) == "45.5s"

    def test_minutes(self):
        assert format_duration(125) == "2m 5s"

    def test_hours(self):
        assert format_duration(3725) == "1h 2m"


class TestFormatStatsSummary:
    def test_lines(self):
        lines = format_stats_summary(MetricsSummary(65000, 12345, 4, 2, 1, 1))
        assert "1m 5s" in lines[0]
        assert "4 (2 ok, 1 failed, 1 blocked)" in lines[1]
        assert "12,345" in lines[2]

    def test_tokens_omitted_when_zero(self):
        lines = format_stats_summary(MetricsSummary(1000, 0, 1, 1, 0, 0))
        assert len(lines) == 2
