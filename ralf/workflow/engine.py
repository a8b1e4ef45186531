"""Loop controller.

Drives one story set to completion, one iteration at a time:

1. Select the next batch with the scheduler
2. Fire on_task_start, build the execution request
3. Execute (concurrently when the batch has more than one story)
4. Record results in the story store, fire completed/blocked hooks
5. Check explicit promise, cancellation and the iteration budget
6. Optionally consult the evaluator
7. Advance the iteration counter

Every iteration re-reads the loop state and story set from disk, so a
controller can be created fresh for each step (the stop hook does exactly
that) and a crash loses at most the iteration in flight.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ralf.agents.evaluator import Evaluator
from ralf.agents.executor import ExecutionContext, ExecutionResult, Executor
from ralf.hooks import HookDispatcher, HookOutcome, TaskBlocked, TaskCompleted, TaskStart
from ralf.lib.completion import is_promise_fulfilled
from ralf.lib.constants import LOOP_PROMPT, PROGRESS_FILE
from ralf.lib.errors import (
    EXIT_CANCELLED,
    EXIT_MAX_ITERATIONS,
    EXIT_OK,
    EXIT_STALLED,
    ReorderRejected,
    StaleStateError,
)
from ralf.lib.progress import append_progress
from ralf.pm.models import AttemptOutcome, Story
from ralf.pm.stories import StoryStore
from ralf.runner.loop_state import LoopState, LoopStateStore, utc_now
from ralf.runner.scheduler import validate_reorder
from ralf.workflow.fsm import IterationFSM

logger = logging.getLogger(__name__)


class TerminationReason(Enum):
    COMPLETED = "Completed"
    STALLED = "Stalled"
    MAX_ITERATIONS = "MaxIterationsReached"
    EXPLICIT_PROMISE = "ExplicitPromise"
    CANCELLED = "Cancelled"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    TerminationReason.COMPLETED: EXIT_OK,
    TerminationReason.EXPLICIT_PROMISE: EXIT_OK,
    TerminationReason.STALLED: EXIT_STALLED,
    TerminationReason.MAX_ITERATIONS: EXIT_MAX_ITERATIONS,
    TerminationReason.CANCELLED: EXIT_CANCELLED,
}


@dataclass
class StoryRun:
    """One story's execution within an iteration."""
    story: Story
    result: ExecutionResult
    started_at: str
    completed_at: str
    duration_ms: int


@dataclass
class IterationOutcome:
    """Result of one run_iteration() call."""
    iteration: int
    reason: Optional[TerminationReason] = None   # None = loop continues
    detail: str = ""
    story_ids: list[str] = field(default_factory=list)
    results: list[ExecutionResult] = field(default_factory=list)
    hook_outcomes: list[HookOutcome] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def terminated(self) -> bool:
        return self.reason is not None

    @property
    def exit_code(self) -> int:
        return self.reason.exit_code if self.reason else EXIT_OK

    def describe(self) -> str:
        if self.reason is None:
            return f"Iteration {self.iteration} finished"
        if self.detail:
            return f"{self.reason.value} - {self.detail}"
        return self.reason.value

    def summary_lines(self) -> list[str]:
        lines = [f"Ralf loop ended: {self.describe()}"]
        if self.counts:
            c = self.counts
            lines.append(
                f"  Stories: {c['passing']}/{c['total']} passing, "
                f"{c['blocked']} blocked, {c['remaining']} remaining"
            )
        return lines


class LoopController:
    """Runs the loop for the story set named by the loop state file.

    Usage:
        controller = LoopController(project_dir, LoopStateStore(state_path),
                                    executor, HookDispatcher(hooks_dir))
        outcome = controller.run()
    """

    def __init__(self, project_dir: Path, state_store: LoopStateStore, executor: Executor,
                 hooks: HookDispatcher, evaluator: Optional[Evaluator] = None):
        self.project_dir = project_dir
        self.state_store = state_store
        self.executor = executor
        self.hooks = hooks
        self.evaluator = evaluator
        self.fsm = IterationFSM(str(state_store.path))
        self.last_outcome: Optional[IterationOutcome] = None
        # additionalContext from completed/blocked hooks, sent with the next request
        self._pending_context: list[str] = []

    @property
    def progress_path(self) -> Path:
        return self.project_dir / PROGRESS_FILE

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    def run(self, max_iterations: Optional[int] = None) -> IterationOutcome:
        """Run iterations until the loop terminates or max_iterations steps ran."""
        steps = 0
        outcome = self.run_iteration()
        steps += 1
        while not outcome.terminated:
            if max_iterations is not None and steps >= max_iterations:
                break
            outcome = self.run_iteration()
            steps += 1
        return outcome

    def run_iteration(self) -> IterationOutcome:
        """Run one iteration. Returns a terminal outcome once the loop has ended."""
        if self.fsm.finished:
            return self.last_outcome

        self.fsm.select()
        state = self.state_store.current()
        if state is None:
            return self._terminate(0, TerminationReason.CANCELLED, "no active loop")

        store = StoryStore.load(self.project_dir / state.prd_path)
        batch = store.next_batch(state.execution_mode)
        if not batch:
            if store.all_pass():
                return self._terminate(state.iteration, TerminationReason.COMPLETED, store=store)
            blocked = len(store.blocked_stories())
            return self._terminate(state.iteration, TerminationReason.STALLED,
                                   f"{blocked} stories blocked", store=store)

        # Stories already applied for this iteration were recorded before a
        # restart; only the checkpoints after applying remain for them.
        pending = [s for s in batch if not s.has_attempt(state.iteration)]
        if len(pending) < len(batch):
            done = [s.id for s in batch if s.has_attempt(state.iteration)]
            logger.info(f"Iteration {state.iteration}: resuming, already applied {', '.join(done)}")

        outcome = IterationOutcome(iteration=state.iteration, story_ids=[s.id for s in pending])
        if pending:
            logger.info(f"Iteration {state.iteration}: {', '.join(outcome.story_ids)}")

        self.fsm.dispatch()
        context = self._build_context(state, store, pending, outcome) if pending else None

        self.fsm.await_result()
        runs = self._execute(pending, context) if pending else []

        self.fsm.apply()
        for run in runs:
            self._apply(store, state, run, outcome)
            outcome.results.append(run.result)
        outcome.counts = store.counts()

        if any(is_promise_fulfilled(run.result.output, state.completion_promise) for run in runs):
            return self._terminate(state.iteration, TerminationReason.EXPLICIT_PROMISE, store=store, outcome=outcome)

        if not self.state_store.exists():
            return self._terminate(state.iteration, TerminationReason.CANCELLED,
                                   "loop state removed", store=store, outcome=outcome)

        if state.should_stop_for_max_iterations():
            return self._terminate(state.iteration, TerminationReason.MAX_ITERATIONS,
                                   f"{state.max_iterations} iterations", store=store, outcome=outcome)

        if self._evaluation_due(store, state.iteration):
            self.fsm.evaluate()
            self._evaluate(store, state.iteration)

        try:
            self.state_store.tick()
        except StaleStateError:
            # Removed (or clobbered) between the checkpoint and the tick
            return self._terminate(state.iteration, TerminationReason.CANCELLED,
                                   "loop state removed", store=store, outcome=outcome)

        self.fsm.finish_iteration()
        self.last_outcome = outcome
        return outcome

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _build_context(self, state: LoopState, store: StoryStore, batch: list[Story],
                       outcome: IterationOutcome) -> ExecutionContext:
        additional = list(self._pending_context)
        self._pending_context = []

        for story in batch:
            hook = self.hooks.fire(TaskStart(
                story_id=story.id,
                title=story.title,
                branch=store.story_set.branch_name,
                iteration=state.iteration,
                priority=story.priority,
                acceptance_criteria=tuple(story.acceptance_criteria),
            ))
            outcome.hook_outcomes.append(hook)
            if hook.additional_context:
                additional.append(hook.additional_context)

        return ExecutionContext(
            iteration=state.iteration,
            project=store.story_set.project,
            branch=store.story_set.branch_name,
            loop_prompt=state.prompt or LOOP_PROMPT.format(prd_path=state.prd_path),
            completion_promise=state.completion_promise,
            tdd_required=store.settings.tdd_required,
            additional_context=additional,
        )

    def _execute_one(self, story: Story, context: ExecutionContext) -> StoryRun:
        started_at = utc_now()
        start = time.time()
        try:
            result = self.executor.execute(story, context)
        except Exception as e:
            logger.exception(f"Executor crashed on {story.id}")
            result = ExecutionResult.failure(story.id, f"Executor error: {e}")
        duration_ms = int((time.time() - start) * 1000)
        return StoryRun(story, result, started_at, utc_now(), result.execution_time_ms or duration_ms)

    def _execute(self, batch: list[Story], context: ExecutionContext) -> list[StoryRun]:
        if len(batch) == 1:
            return [self._execute_one(batch[0], context)]

        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futures = [pool.submit(self._execute_one, story, context) for story in batch]
            # Results are applied in selection order, whatever order they finish in
            return [f.result() for f in futures]

    def _apply(self, store: StoryStore, state: LoopState, run: StoryRun, outcome: IterationOutcome) -> None:
        result = run.result
        story = store.get(run.story.id)
        if story.has_attempt(state.iteration):
            logger.info(f"Result for {story.id} in iteration {state.iteration} already applied")
            return

        was_blocked = story.is_blocked
        story = store.mark_result(story.id, AttemptOutcome(
            iteration=state.iteration,
            status=result.status,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_ms=run.duration_ms,
            tokens_consumed=result.tokens_consumed,
            blocked_reason=result.blocked_reason,
            errors=result.errors,
        ))

        append_progress(
            self.progress_path, state.iteration, story.id, story.title,
            "PASS" if story.passes else ("BLOCKED" if story.is_blocked else "FAIL"),
            files_changed=result.files_changed,
            learnings=result.learnings,
            errors=result.errors,
        )

        if result.succeeded:
            hook = self.hooks.fire(TaskCompleted(
                story_id=story.id,
                title=story.title,
                commit_hash=result.commit_hash,
                files_changed=tuple(result.files_changed),
                started_at=story.metrics.started_at,
                completed_at=story.metrics.completed_at,
                duration_ms=story.metrics.duration_ms,
                tokens_consumed=story.metrics.tokens_consumed,
            ))
        elif story.is_blocked and not was_blocked:
            errors = [e for attempt in story.metrics.attempts for e in attempt.errors]
            hook = self.hooks.fire(TaskBlocked(
                story_id=story.id,
                title=story.title,
                blocked_reason=story.blocked_reason,
                retry_count=story.retry_count,
                errors=tuple(errors),
                last_started_at=run.started_at,
                last_completed_at=run.completed_at,
            ))
            logger.warning(f"{story.id} blocked: {story.blocked_reason}")
        else:
            logger.info(f"{story.id} failed attempt {story.retry_count}/{store.settings.max_retries}")
            return

        outcome.hook_outcomes.append(hook)
        if hook.additional_context:
            self._pending_context.append(hook.additional_context)

    def _evaluation_due(self, store: StoryStore, iteration: int) -> bool:
        settings = store.settings
        if not settings.evaluator_enabled or self.evaluator is None:
            return False
        every = settings.evaluate_every_n_iterations
        return every > 0 and iteration % every == 0

    def _evaluate(self, store: StoryStore, iteration: int) -> None:
        report = self.evaluator.evaluate(store.stories, iteration)
        if report.notes:
            logger.info(f"Evaluator notes: {report.notes}")
        if not report.reorder:
            return
        if not store.settings.allow_reorder:
            logger.info(f"Ignoring {len(report.reorder)} reorder proposals: allowReorder is off")
            return

        try:
            changes = validate_reorder(store.stories, report.reorder)
        except ReorderRejected as e:
            logger.warning(f"Reorder rejected: {e}")
            return

        store.apply_priorities(changes)
        logger.info(f"Applied evaluator priorities: {changes}")

    def _terminate(self, iteration: int, reason: TerminationReason, detail: str = "",
                   store: Optional[StoryStore] = None,
                   outcome: Optional[IterationOutcome] = None) -> IterationOutcome:
        outcome = outcome or IterationOutcome(iteration=iteration)
        outcome.reason = reason
        outcome.detail = detail
        if store is not None:
            outcome.counts = store.counts()

        self.fsm.terminate()
        self.state_store.clear()
        self.last_outcome = outcome
        logger.info(f"Loop terminated at iteration {iteration}: {outcome.describe()}")
        return outcome
