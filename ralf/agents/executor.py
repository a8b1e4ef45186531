"""
Story executor integration for Ralf.

The executor is the external agent that implements a story. Ralf only sees
it through a capability: execute(story, context) -> ExecutionResult. The
default CommandExecutor runs a CLI (Claude by default) with the rendered
story prompt on stdin and parses the JSON result contract from its output.
"""

import json
import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from ralf.lib.constants import STATUS_BLOCKED, STATUS_FAILURE, STATUS_SUCCESS
from ralf.lib.errors import ExecutorFailure
from ralf.lib.prompts import build_section, render_prompt
from ralf.lib.validate import ValidationError, validate
from ralf.pm.models import Story

logger = logging.getLogger(__name__)


@dataclass
class ExecutionContext:
    """Everything the executor gets besides the story itself."""
    iteration: int
    project: str
    branch: str
    loop_prompt: str = ""
    completion_promise: str = ""
    tdd_required: bool = False
    additional_context: list[str] = field(default_factory=list)


@dataclass
class ExecutionResult:
    """Executor result contract."""
    story_id: str
    status: str                                 # success, failure, blocked
    files_changed: list[str] = field(default_factory=list)
    verification_results: dict = field(default_factory=dict)
    commit_hash: Optional[str] = None
    learnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    execution_time_ms: int = 0
    tokens_consumed: int = 0
    iteration: Optional[int] = None
    blocked_reason: Optional[str] = None
    output: str = ""                            # Raw executor text, used for promise detection

    @classmethod
    def from_dict(cls, data: dict, output: str = "") -> "ExecutionResult":
        """Build from contract JSON.

        Raises:
            ValidationError: If data doesn't match the execution_result schema
        """
        validate(data, "execution_result")
        metrics = data.get("metrics") or {}
        return cls(
            story_id=data["storyId"],
            status=data["status"],
            files_changed=list(data.get("filesChanged") or []),
            verification_results=dict(data.get("verificationResults") or {}),
            commit_hash=data.get("commitHash"),
            learnings=list(data.get("learnings") or []),
            errors=list(data.get("errors") or []),
            execution_time_ms=metrics.get("executionTimeMs", 0),
            tokens_consumed=metrics.get("tokensConsumed", 0),
            iteration=metrics.get("iteration"),
            blocked_reason=data.get("blockedReason"),
            output=output,
        )

    @classmethod
    def failure(cls, story_id: str, error: str, output: str = "", execution_time_ms: int = 0) -> "ExecutionResult":
        return cls(story_id=story_id, status=STATUS_FAILURE, errors=[error],
                   output=output, execution_time_ms=execution_time_ms)

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    @property
    def blocked(self) -> bool:
        return self.status == STATUS_BLOCKED


class Executor(Protocol):
    def execute(self, story: Story, context: ExecutionContext) -> ExecutionResult:
        ...


def render_story_prompt(story: Story, context: ExecutionContext) -> str:
    """Render the story prompt sent to the executor."""
    criteria = "\n".join(f"- [ ] {c}" for c in story.acceptance_criteria)
    files = "\n".join(f"- {f}" for f in story.target_files)
    extra = "\n\n".join(context.additional_context)
    return render_prompt(
        "story",
        loop_prompt=context.loop_prompt,
        project=context.project,
        branch=context.branch,
        iteration=context.iteration,
        story_id=story.id,
        title=story.title,
        description=story.description,
        priority=story.priority,
        criteria_section=build_section(criteria, "## Acceptance Criteria", "(none listed)"),
        files_section=build_section(files, "## Likely Files (hints only)"),
        context_section=build_section(extra, "## Additional Context"),
        tdd_note="Write failing tests first (TDD required)." if context.tdd_required else "",
        completion_promise=context.completion_promise,
    )


def extract_json_block(text: str) -> str:
    """Pull the JSON payload out of agent output.

    Claude sometimes adds prose before a fenced block; take the last
    ```json (or bare ```) block if there is one, else the whole text.
    """
    text = text.strip()
    start = text.rfind("```json")
    if start == -1:
        start = text.find("```")
    if start != -1:
        newline_after_open = text.find("\n", start)
        if newline_after_open != -1:
            close = text.find("\n```", newline_after_open)
            if close != -1:
                return text[newline_after_open + 1:close].strip()
    return text


def unwrap_output(stdout: str) -> str:
    """Inner text of a Claude CLI {"type": "result", "result": "..."} wrapper, else stdout."""
    try:
        wrapper = json.loads(stdout.strip())
    except json.JSONDecodeError:
        return stdout
    if isinstance(wrapper, dict) and wrapper.get("type") == "result" and isinstance(wrapper.get("result"), str):
        return wrapper["result"]
    return stdout


def parse_executor_output(story_id: str, stdout: str) -> ExecutionResult:
    """Parse executor stdout into an ExecutionResult.

    Accepts the bare result JSON or the Claude CLI wrapper
    {"type": "result", "result": "..."}.

    Raises:
        ExecutorFailure: If no valid result contract can be found
    """
    text = unwrap_output(stdout).strip()
    try:
        data = json.loads(extract_json_block(text))
    except json.JSONDecodeError as e:
        raise ExecutorFailure(f"Executor output for {story_id} is not valid JSON: {e}") from None
    if not isinstance(data, dict):
        raise ExecutorFailure(f"Executor output for {story_id} is not a JSON object")
    return _result_from_data(story_id, data, text)


def _result_from_data(story_id: str, data: dict, output: str) -> ExecutionResult:
    try:
        result = ExecutionResult.from_dict(data, output=output)
    except ValidationError as e:
        raise ExecutorFailure(f"Executor result for {story_id} failed validation: {e}") from None
    if result.story_id != story_id:
        raise ExecutorFailure(f"Executor reported result for {result.story_id}, expected {story_id}")
    return result


class CommandExecutor:
    """Runs an external CLI per story.

    The rendered prompt goes in on stdin. There is no timeout unless one is
    configured: implementing a story can take a long time.
    """

    def __init__(self, command: list[str], cwd: Path, timeout: Optional[int] = None, log_dir: Optional[Path] = None):
        self.command = command
        self.cwd = cwd
        self.timeout = timeout
        self.log_dir = log_dir

    def execute(self, story: Story, context: ExecutionContext) -> ExecutionResult:
        prompt = render_story_prompt(story, context)
        start = time.time()

        try:
            result = subprocess.run(
                self.command,
                cwd=str(self.cwd),
                input=prompt,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            elapsed = int((time.time() - start) * 1000)
            return ExecutionResult.failure(story.id, f"Executor timed out after {self.timeout}s",
                                           execution_time_ms=elapsed)
        except OSError as e:
            return ExecutionResult.failure(story.id, f"Executor could not run: {e}")

        elapsed = int((time.time() - start) * 1000)
        self._log(story, context, result)

        output = unwrap_output(result.stdout)
        if result.returncode != 0:
            error = result.stderr.strip()[:500] or f"exit code {result.returncode}"
            return ExecutionResult.failure(story.id, f"Executor exited {result.returncode}: {error}",
                                           output=output, execution_time_ms=elapsed)

        try:
            parsed = parse_executor_output(story.id, result.stdout)
        except ExecutorFailure as e:
            logger.warning(str(e))
            return ExecutionResult.failure(story.id, str(e), output=output, execution_time_ms=elapsed)

        if not parsed.execution_time_ms:
            parsed.execution_time_ms = elapsed
        return parsed

    def _log(self, story: Story, context: ExecutionContext, result: subprocess.CompletedProcess) -> None:
        if not self.log_dir:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_dir / f"iteration-{context.iteration:03d}-{story.id}.log"
        log_file.write_text(
            f"=== COMMAND ===\n{' '.join(self.command)}\n\n"
            f"=== EXIT CODE ===\n{result.returncode}\n\n"
            f"=== STDOUT ===\n{result.stdout}\n\n"
            f"=== STDERR ===\n{result.stderr}\n"
        )
