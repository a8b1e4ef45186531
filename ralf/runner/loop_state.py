"""
Loop state: the file-backed singleton that says a loop is running.

The driver is re-invoked as a fresh process every iteration, so nothing is
held in memory between ticks. Every operation is load, mutate, atomic write.
The file's presence is the "active" flag: deleting it cancels the loop at
the next checkpoint.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ralf.lib.constants import (
    DEFAULT_BRANCH,
    DEFAULT_COMPLETION_PROMISE,
    DEFAULT_PROJECT,
    MODE_SEQUENTIAL,
)
from ralf.lib.errors import AlreadyActiveError, StaleStateError
from ralf.lib.fileio import atomic_write_json
from ralf.lib.validate import ValidationError, validate
from ralf.runner.locking import file_lock

logger = logging.getLogger(__name__)

STATE_LOCK_TIMEOUT = 5


@dataclass
class LoopState:
    """Contents of .claude/ralf-state.json."""
    prd_path: str
    iteration: int = 1
    max_iterations: int = 0                      # 0 = unbounded
    execution_mode: str = MODE_SEQUENTIAL
    completion_promise: str = DEFAULT_COMPLETION_PROMISE
    project: str = DEFAULT_PROJECT
    branch: str = DEFAULT_BRANCH
    started_at: str = ""
    prompt: str = ""
    active: bool = True

    def should_stop_for_max_iterations(self) -> bool:
        return self.max_iterations > 0 and self.iteration >= self.max_iterations

    def remaining_iterations(self) -> Optional[int]:
        if self.max_iterations <= 0:
            return None
        return max(0, self.max_iterations - self.iteration + 1)

    @classmethod
    def from_dict(cls, data: dict) -> "LoopState":
        return cls(
            active=data.get("active", True),
            iteration=data["iteration"],
            max_iterations=data.get("maxIterations", 0),
            execution_mode=data.get("executionMode", MODE_SEQUENTIAL),
            completion_promise=data.get("completionPromise", DEFAULT_COMPLETION_PROMISE),
            prd_path=data["prdPath"],
            project=data.get("project", DEFAULT_PROJECT),
            branch=data.get("branch", DEFAULT_BRANCH),
            started_at=data.get("startedAt", ""),
            prompt=data.get("prompt", ""),
        )

    def to_dict(self) -> dict:
        return {
            "active": self.active,
            "iteration": self.iteration,
            "maxIterations": self.max_iterations,
            "executionMode": self.execution_mode,
            "completionPromise": self.completion_promise,
            "prdPath": self.prd_path,
            "project": self.project,
            "branch": self.branch,
            "startedAt": self.started_at,
            "prompt": self.prompt,
        }


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class LoopStateStore:
    """Load/persist boundary for the loop state file."""

    def __init__(self, path: Path):
        self.path = path

    def _locked(self):
        """Short-lived lock serializing tick() against clear().

        Separate from the project lock, which `ralf run` holds for a whole
        run while `ralf cancel` must still get through.
        """
        lock_file = self.path.with_name(f"{self.path.name}.lock")
        return file_lock(lock_file, STATE_LOCK_TIMEOUT, f"lock on {self.path}")

    def exists(self) -> bool:
        return self.path.exists()

    def start(self, state: LoopState) -> LoopState:
        """Create the state file for a new loop.

        The file is written to a temp path and hard-linked into place, so the
        presence check and the creation are one atomic step.

        Raises:
            AlreadyActiveError: If a loop state file already exists
        """
        if self.path.exists():
            raise AlreadyActiveError(f"Ralf loop already active ({self.path})")

        if not state.started_at:
            state.started_at = utc_now()
        state.active = True

        tmp_path = self.path.with_name(f"{self.path.name}.new.{os.getpid()}")
        atomic_write_json(tmp_path, state.to_dict())
        try:
            os.link(tmp_path, self.path)
        except FileExistsError:
            raise AlreadyActiveError(f"Ralf loop already active ({self.path})") from None
        finally:
            tmp_path.unlink()

        logger.info(f"Loop started: {state.prd_path} (mode={state.execution_mode}, "
                    f"max_iterations={state.max_iterations})")
        return state

    def load(self) -> Optional[LoopState]:
        """Load the state file.

        Returns:
            LoopState, or None if no loop is active

        Raises:
            StaleStateError: If the file exists but cannot be interpreted
        """
        try:
            content = self.path.read_text()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StaleStateError(f"Could not read {self.path}: {e}") from None

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise StaleStateError(f"Invalid JSON in {self.path}: {e}") from None
        if not isinstance(data, dict):
            raise StaleStateError(f"Invalid loop state in {self.path}")

        try:
            validate(data, "loop_state")
        except ValidationError as e:
            raise StaleStateError(f"Corrupted loop state: {e}") from None

        return LoopState.from_dict(data)

    def current(self) -> Optional[LoopState]:
        """Load the state, discarding a corrupted file instead of failing."""
        try:
            return self.load()
        except StaleStateError as e:
            logger.warning(f"Ralf state corrupted - removing: {e}")
            self.clear()
            return None

    def save(self, state: LoopState) -> None:
        atomic_write_json(self.path, state.to_dict())

    def tick(self) -> int:
        """Advance the iteration counter on disk and return the new value.

        Raises:
            StaleStateError: If there is no loop to advance
        """
        with self._locked():
            state = self.load()
            if state is None:
                raise StaleStateError(f"No active loop at {self.path}")
            state.iteration += 1
            self.save(state)
        return state.iteration

    def should_stop_for_max_iterations(self) -> bool:
        state = self.current()
        return state is not None and state.should_stop_for_max_iterations()

    def clear(self) -> None:
        """Delete the state file. Safe to call when it doesn't exist.

        Waits for an in-flight tick() so its write cannot bring the file back.
        """
        with self._locked():
            self.path.unlink(missing_ok=True)
