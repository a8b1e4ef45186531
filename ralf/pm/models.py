"""
Data models for the story set.

JSON uses camelCase keys (the prd.json format shared with the agent prompts);
attributes are snake_case. Unknown story keys are carried through untouched
so notes written by the agent survive a load/save cycle.
"""

from dataclasses import dataclass, field
from typing import Optional

from ralf.lib.constants import (
    DEFAULT_BRANCH,
    DEFAULT_EVALUATE_EVERY,
    DEFAULT_MAX_PARALLEL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PROJECT,
    MODE_SEQUENTIAL,
)


@dataclass
class Attempt:
    """One execution attempt of a story. Append-only."""
    iteration: int
    status: str                                # success, failure, blocked
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: int = 0
    tokens_consumed: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Attempt":
        return cls(
            iteration=data["iteration"],
            status=data["status"],
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
            duration_ms=data.get("durationMs", 0),
            tokens_consumed=data.get("tokensConsumed", 0),
            errors=list(data.get("errors", [])),
        )

    def to_dict(self) -> dict:
        return {
            "iteration": self.iteration,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "tokensConsumed": self.tokens_consumed,
            "status": self.status,
            "errors": list(self.errors),
        }


@dataclass
class StoryMetrics:
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: int = 0
    tokens_consumed: int = 0
    attempts: list[Attempt] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "StoryMetrics":
        if not data:
            return cls()
        return cls(
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
            duration_ms=data.get("durationMs", 0),
            tokens_consumed=data.get("tokensConsumed", 0),
            attempts=[Attempt.from_dict(a) for a in data.get("attempts", [])],
        )

    def to_dict(self) -> dict:
        return {
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationMs": self.duration_ms,
            "tokensConsumed": self.tokens_consumed,
            "attempts": [a.to_dict() for a in self.attempts],
        }


# Keys owned by Story; anything else lands in Story.extra
_STORY_KEYS = {
    "id", "title", "description", "acceptanceCriteria", "priority", "passes",
    "blockedReason", "targetFiles", "dependsOn", "retryCount", "metrics",
}


@dataclass
class Story:
    """A unit of work with acceptance criteria and pass/fail status."""
    id: str
    title: str
    priority: int
    passes: bool = False
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    blocked_reason: Optional[str] = None
    target_files: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)  # Prerequisite story IDs
    retry_count: int = 0
    metrics: StoryMetrics = field(default_factory=StoryMetrics)
    extra: dict = field(default_factory=dict)

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocked_reason)

    @property
    def is_eligible(self) -> bool:
        return not self.passes and not self.is_blocked

    def has_attempt(self, iteration: int) -> bool:
        return any(a.iteration == iteration for a in self.metrics.attempts)

    @classmethod
    def from_dict(cls, data: dict) -> "Story":
        return cls(
            id=data["id"],
            title=data["title"],
            priority=data["priority"],
            passes=data["passes"],
            description=data.get("description", ""),
            acceptance_criteria=list(data.get("acceptanceCriteria", [])),
            blocked_reason=data.get("blockedReason"),
            target_files=list(data.get("targetFiles", [])),
            depends_on=list(data.get("dependsOn", [])),
            retry_count=data.get("retryCount", 0),
            metrics=StoryMetrics.from_dict(data.get("metrics")),
            extra={k: v for k, v in data.items() if k not in _STORY_KEYS},
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "priority": self.priority,
            "passes": self.passes,
            "blockedReason": self.blocked_reason,
            "targetFiles": list(self.target_files),
            "dependsOn": list(self.depends_on),
            "retryCount": self.retry_count,
            "metrics": self.metrics.to_dict(),
        }
        data.update(self.extra)
        return data


_SETTINGS_KEYS = {
    "tddRequired", "autoPush", "executionMode", "evaluatorEnabled", "allowReorder",
    "evaluateEveryNIterations", "maxRetries", "maxParallel",
}


@dataclass
class StorySettings:
    tdd_required: bool = False
    auto_push: bool = False
    execution_mode: str = MODE_SEQUENTIAL
    evaluator_enabled: bool = False
    allow_reorder: bool = False
    evaluate_every_n_iterations: int = DEFAULT_EVALUATE_EVERY
    max_retries: int = DEFAULT_MAX_RETRIES
    max_parallel: int = DEFAULT_MAX_PARALLEL
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "StorySettings":
        data = data or {}
        return cls(
            tdd_required=data.get("tddRequired", False),
            auto_push=data.get("autoPush", False),
            execution_mode=data.get("executionMode", MODE_SEQUENTIAL),
            evaluator_enabled=data.get("evaluatorEnabled", False),
            allow_reorder=data.get("allowReorder", False),
            evaluate_every_n_iterations=data.get("evaluateEveryNIterations", DEFAULT_EVALUATE_EVERY),
            max_retries=data.get("maxRetries", DEFAULT_MAX_RETRIES),
            max_parallel=data.get("maxParallel", DEFAULT_MAX_PARALLEL),
            extra={k: v for k, v in data.items() if k not in _SETTINGS_KEYS},
        )

    def to_dict(self) -> dict:
        data = {
            "tddRequired": self.tdd_required,
            "autoPush": self.auto_push,
            "executionMode": self.execution_mode,
            "evaluatorEnabled": self.evaluator_enabled,
            "allowReorder": self.allow_reorder,
            "evaluateEveryNIterations": self.evaluate_every_n_iterations,
            "maxRetries": self.max_retries,
            "maxParallel": self.max_parallel,
        }
        data.update(self.extra)
        return data


_STORY_SET_KEYS = {"project", "branchName", "description", "settings", "userStories"}


@dataclass
class StorySet:
    """The whole prd.json document."""
    project: str = DEFAULT_PROJECT
    branch_name: str = DEFAULT_BRANCH
    description: str = ""
    settings: StorySettings = field(default_factory=StorySettings)
    stories: list[Story] = field(default_factory=list)
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "StorySet":
        return cls(
            project=data.get("project", DEFAULT_PROJECT),
            branch_name=data.get("branchName", DEFAULT_BRANCH),
            description=data.get("description", ""),
            settings=StorySettings.from_dict(data.get("settings")),
            stories=[Story.from_dict(s) for s in data.get("userStories", [])],
            extra={k: v for k, v in data.items() if k not in _STORY_SET_KEYS},
        )

    def to_dict(self) -> dict:
        data = {
            "project": self.project,
            "branchName": self.branch_name,
            "description": self.description,
            "settings": self.settings.to_dict(),
            "userStories": [s.to_dict() for s in self.stories],
        }
        data.update(self.extra)
        return data


@dataclass
class AttemptOutcome:
    """What the controller learned from one execution attempt of a story."""
    iteration: int
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: int = 0
    tokens_consumed: int = 0
    blocked_reason: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    def to_attempt(self) -> Attempt:
        return Attempt(
            iteration=self.iteration,
            status=self.status,
            started_at=self.started_at,
            completed_at=self.completed_at,
            duration_ms=self.duration_ms,
            tokens_consumed=self.tokens_consumed,
            errors=list(self.errors),
        )
