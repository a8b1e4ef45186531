"""
Story set module for Ralf.

Handles the prd.json story set: loading, validation, status updates and
archiving when a new branch replaces the previous run.
"""

from ralf.pm.models import Attempt, AttemptOutcome, Story, StoryMetrics, StorySet, StorySettings
from ralf.pm.stories import StoryStore, parse_story_set

__all__ = [
    "Attempt",
    "AttemptOutcome",
    "Story",
    "StoryMetrics",
    "StorySet",
    "StorySettings",
    "StoryStore",
    "parse_story_set",
]
