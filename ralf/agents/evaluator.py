"""
Evaluator integration for Ralf.

The evaluator is an external advisor that looks at aggregate progress every
few iterations and may propose new story priorities. Its advice is never
trusted blindly: the controller applies a proposal only when the story set
allows reordering and the precedence check in the scheduler passes.
"""

import json
import logging
import subprocess
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional, Protocol

from ralf.agents.executor import extract_json_block, unwrap_output
from ralf.lib.prompts import render_prompt
from ralf.lib.stats import summarize_metrics
from ralf.lib.validate import ValidationError, validate
from ralf.pm.models import Story

logger = logging.getLogger(__name__)


@dataclass
class EvaluationReport:
    reorder: list[dict] = field(default_factory=list)  # [{"storyId": ..., "priority": ...}]
    notes: str = ""


class Evaluator(Protocol):
    def evaluate(self, stories: list[Story], iteration: int) -> EvaluationReport:
        ...


def build_snapshot(stories: list[Story], iteration: int) -> dict:
    """Metrics snapshot handed to the evaluator."""
    return {
        "iteration": iteration,
        "stories": [
            {
                "id": s.id,
                "title": s.title,
                "priority": s.priority,
                "passes": s.passes,
                "blockedReason": s.blocked_reason,
                "retryCount": s.retry_count,
                "dependsOn": s.depends_on,
                "attempts": len(s.metrics.attempts),
                "durationMs": s.metrics.duration_ms,
                "tokensConsumed": s.metrics.tokens_consumed,
            }
            for s in stories
        ],
        "summary": asdict(summarize_metrics(stories)),
    }


def parse_evaluation(text: str) -> EvaluationReport:
    """Parse evaluator output into a report.

    Raises:
        ValueError: If the output is not a valid evaluation report
    """
    try:
        data = json.loads(extract_json_block(unwrap_output(text)))
    except json.JSONDecodeError as e:
        raise ValueError(f"Evaluator output is not valid JSON: {e}") from None
    if not isinstance(data, dict):
        raise ValueError("Evaluator output is not a JSON object")
    try:
        validate(data, "evaluation")
    except ValidationError as e:
        raise ValueError(str(e)) from None
    return EvaluationReport(reorder=data.get("reorder", []), notes=data.get("notes", ""))


class CommandEvaluator:
    """Runs an external CLI with the evaluator prompt on stdin."""

    def __init__(self, command: list[str], cwd: Path, timeout: Optional[int] = None):
        self.command = command
        self.cwd = cwd
        self.timeout = timeout

    def evaluate(self, stories: list[Story], iteration: int) -> EvaluationReport:
        prompt = render_prompt(
            "evaluate",
            iteration=iteration,
            snapshot=json.dumps(build_snapshot(stories, iteration), indent=2),
        )
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
            logger.warning(f"Evaluator timed out after {self.timeout}s")
            return EvaluationReport()
        except OSError as e:
            logger.warning(f"Evaluator could not run: {e}")
            return EvaluationReport()

        if result.returncode != 0:
            logger.warning(f"Evaluator exited {result.returncode}: {result.stderr.strip()[:200]}")
            return EvaluationReport()

        try:
            return parse_evaluation(result.stdout)
        except ValueError as e:
            logger.warning(f"Ignoring evaluator output: {e}")
            return EvaluationReport()
