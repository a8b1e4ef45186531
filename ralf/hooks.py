"""
Lifecycle hooks for Ralf.

Fires on_task_start, on_task_completed and on_task_blocked to external
handlers (issue trackers, chat notifiers, metrics sinks). Handlers receive a
JSON payload on stdin. Hooks are advisory: a missing handler is skipped and
a failing one is logged, never raised to the loop.

Handlers are resolved in order:
1. A command configured under `hooks:` in .ralf/config.yaml
2. An executable script in .ralf/hooks/ (on-task-start.sh, ...)

A handler may print JSON with an "additionalContext" string on stdout; the
loop forwards it to the next execution request.
"""

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import ClassVar, Optional

from ralf.lib.constants import DEFAULT_HOOK_TIMEOUT
from ralf.lib.errors import HookFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskStart:
    hook_name: ClassVar[str] = "on_task_start"

    story_id: str
    title: str
    branch: str
    iteration: int
    priority: int
    acceptance_criteria: tuple[str, ...] = ()

    def to_payload(self) -> dict:
        return {
            "storyId": self.story_id,
            "title": self.title,
            "branch": self.branch,
            "iteration": self.iteration,
            "priority": self.priority,
            "acceptanceCriteria": list(self.acceptance_criteria),
        }


@dataclass(frozen=True)
class TaskCompleted:
    hook_name: ClassVar[str] = "on_task_completed"

    story_id: str
    title: str
    commit_hash: Optional[str]
    files_changed: tuple[str, ...] = ()
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration_ms: int = 0
    tokens_consumed: int = 0

    def to_payload(self) -> dict:
        return {
            "storyId": self.story_id,
            "title": self.title,
            "commitHash": self.commit_hash,
            "filesChanged": list(self.files_changed),
            "metrics": {
                "startedAt": self.started_at,
                "completedAt": self.completed_at,
                "durationMs": self.duration_ms,
                "tokensConsumed": self.tokens_consumed,
            },
        }


@dataclass(frozen=True)
class TaskBlocked:
    hook_name: ClassVar[str] = "on_task_blocked"

    story_id: str
    title: str
    blocked_reason: str
    retry_count: int
    errors: tuple[str, ...] = ()
    last_started_at: Optional[str] = None
    last_completed_at: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            "storyId": self.story_id,
            "title": self.title,
            "blockedReason": self.blocked_reason,
            "retryCount": self.retry_count,
            "errors": list(self.errors),
            "lastAttempt": {
                "startedAt": self.last_started_at,
                "completedAt": self.last_completed_at,
                "error": self.errors[-1] if self.errors else None,
            },
        }


HookEvent = TaskStart | TaskCompleted | TaskBlocked

# on_task_start -> on-task-start.sh
HOOK_SCRIPTS = {
    name: name.replace("_", "-") + ".sh"
    for name in (TaskStart.hook_name, TaskCompleted.hook_name, TaskBlocked.hook_name)
}


class HookStatus(Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class HookOutcome:
    hook: str
    status: HookStatus
    reason: str = ""
    exit_code: Optional[int] = None
    additional_context: Optional[str] = None
    stdout: str = field(default="", repr=False)


def parse_hook_output(stdout: str) -> Optional[str]:
    """Extract additionalContext from handler stdout. Anything else is ignored."""
    text = stdout.strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict) and isinstance(data.get("additionalContext"), str):
        return data["additionalContext"]
    return None


class HookDispatcher:
    """Delivers lifecycle events to configured handlers."""

    def __init__(self, hooks_dir: Path, timeout: int = DEFAULT_HOOK_TIMEOUT,
                 commands: Optional[dict[str, list[str]]] = None, cwd: Optional[Path] = None):
        self.hooks_dir = hooks_dir
        self.timeout = timeout
        self.commands = commands or {}
        self.cwd = cwd

    @classmethod
    def from_config(cls, config) -> "HookDispatcher":
        return cls(config.hooks_dir, config.hook_timeout, config.hooks, config.project_dir)

    def resolve(self, hook_name: str) -> tuple[Optional[list[str]], str]:
        """Find the handler command for a hook.

        Returns:
            (command, reason) where command is None if the hook is skipped
        """
        if hook_name in self.commands:
            return self.commands[hook_name], ""

        script = self.hooks_dir / HOOK_SCRIPTS[hook_name]
        if not script.exists():
            return None, f"no handler at {script}"
        if not os.access(script, os.X_OK):
            return None, f"{script} is not executable"
        return [str(script)], ""

    def _run(self, hook_name: str, cmd: list[str], payload: dict) -> subprocess.CompletedProcess:
        """Run a handler.

        Raises:
            HookFailure: On timeout, OS error, or non-zero exit
        """
        try:
            result = subprocess.run(
                cmd,
                input=json.dumps(payload),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=str(self.cwd) if self.cwd else None,
            )
        except subprocess.TimeoutExpired:
            raise HookFailure(f"{hook_name} timed out after {self.timeout}s") from None
        except OSError as e:
            raise HookFailure(f"{hook_name} could not run: {e}") from None

        if result.stderr:
            logger.debug(f"[hook] {hook_name} stderr: {result.stderr.strip()}")
        if result.returncode != 0:
            raise HookFailure(f"{hook_name} exited {result.returncode}: {result.stderr.strip()[:200]}")
        return result

    def fire(self, event: HookEvent) -> HookOutcome:
        """Deliver an event. Never raises."""
        hook_name = event.hook_name
        cmd, reason = self.resolve(hook_name)
        if cmd is None:
            logger.debug(f"[hook] {hook_name} skipped: {reason}")
            return HookOutcome(hook_name, HookStatus.SKIPPED, reason)

        try:
            result = self._run(hook_name, cmd, event.to_payload())
        except HookFailure as e:
            logger.warning(f"[hook] {e}")
            return HookOutcome(hook_name, HookStatus.FAILED, str(e))

        logger.info(f"[hook] {hook_name} delivered for {event.story_id}")
        return HookOutcome(
            hook_name,
            HookStatus.DELIVERED,
            exit_code=result.returncode,
            additional_context=parse_hook_output(result.stdout),
            stdout=result.stdout,
        )
