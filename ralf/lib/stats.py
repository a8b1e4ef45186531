"""
Stats aggregation for story metrics.

Summarizes per-story attempt metrics for status output, the termination
report and the evaluator snapshot.
"""

from dataclasses import dataclass

from ralf.lib.constants import STATUS_BLOCKED, STATUS_FAILURE, STATUS_SUCCESS
from ralf.pm.models import Story


@dataclass
class MetricsSummary:
    """Aggregated metrics across a story set."""
    total_duration_ms: int
    total_tokens: int
    attempts: int
    successful_attempts: int
    failed_attempts: int
    blocked_attempts: int


def summarize_metrics(stories: list[Story]) -> MetricsSummary:
    duration = 0
    tokens = 0
    attempts = 0
    by_status = {STATUS_SUCCESS: 0, STATUS_FAILURE: 0, STATUS_BLOCKED: 0}

    for story in stories:
        duration += story.metrics.duration_ms
        tokens += story.metrics.tokens_consumed
        for attempt in story.metrics.attempts:
            attempts += 1
            if attempt.status in by_status:
                by_status[attempt.status] += 1

    return MetricsSummary(
        total_duration_ms=duration,
        total_tokens=tokens,
        attempts=attempts,
        successful_attempts=by_status[STATUS_SUCCESS],
        failed_attempts=by_status[STATUS_FAILURE],
        blocked_attempts=by_status[STATUS_BLOCKED],
    )


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes < 60:
        return f"{minutes}m {secs:.0f}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"


def format_stats_summary(summary: MetricsSummary) -> list[str]:
    """Format summary as list of lines for display."""
    lines = [
        f"  Total time:    {format_duration(summary.total_duration_ms / 1000)}",
        f"  Attempts:      {summary.attempts} ({summary.successful_attempts} ok, "
        f"{summary.failed_attempts} failed, {summary.blocked_attempts} blocked)",
    ]
    if summary.total_tokens:
        lines.append(f"  Tokens:        {summary.total_tokens:,}")
    return lines
