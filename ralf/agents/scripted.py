"""
Deterministic executor that replays scripted results.

Used for dry runs of a story set (`ralf run --script results.json`) and in
tests. The script maps story IDs to the ordered results each attempt should
return:

    {
      "US-001": [{"status": "failure", "errors": ["tests failed"]},
                 {"status": "success", "commitHash": "abc123"}],
      "US-002": [{"status": "success", "output": "<promise>COMPLETE</promise>"}]
    }

When a story's list is exhausted its last entry repeats. Stories missing
from the script get `default` (success unless configured otherwise).
"""

import json
import logging
import threading
from pathlib import Path
from typing import Optional

from ralf.agents.executor import ExecutionContext, ExecutionResult
from ralf.lib.constants import RESULT_STATUSES, STATUS_SUCCESS
from ralf.lib.errors import ConfigError
from ralf.pm.models import Story

logger = logging.getLogger(__name__)


class ScriptedExecutor:
    def __init__(self, script: dict[str, list[dict]], default: Optional[dict] = None):
        self.script = {story_id: list(entries) for story_id, entries in script.items()}
        self.default = default if default is not None else {"status": STATUS_SUCCESS}
        self.calls: list[tuple[str, int]] = []
        self._positions: dict[str, int] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Path) -> "ScriptedExecutor":
        try:
            data = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not load executor script {path}: {e}") from None
        if not isinstance(data, dict) or not all(isinstance(v, list) for v in data.values()):
            raise ConfigError(f"Executor script {path} must map story IDs to lists of results")
        for story_id, entries in data.items():
            for entry in entries:
                if not isinstance(entry, dict) or entry.get("status", STATUS_SUCCESS) not in RESULT_STATUSES:
                    raise ConfigError(f"Executor script {path}: bad entry for {story_id}: {entry!r}")
        return cls(data)

    def _next_entry(self, story_id: str) -> dict:
        entries = self.script.get(story_id)
        if not entries:
            return self.default
        with self._lock:
            position = self._positions.get(story_id, 0)
            self._positions[story_id] = position + 1
        return entries[min(position, len(entries) - 1)]

    def execute(self, story: Story, context: ExecutionContext) -> ExecutionResult:
        with self._lock:
            self.calls.append((story.id, context.iteration))
        entry = dict(self._next_entry(story.id))
        output = entry.pop("output", "")
        entry.setdefault("storyId", story.id)
        entry.setdefault("metrics", {"iteration": context.iteration})
        logger.debug(f"Scripted result for {story.id}: {entry.get('status')}")
        return ExecutionResult.from_dict(entry, output=output)
