"""Orchestration engine: run the agent over a unit's tasks.

One iteration:
  1. SELECT    lowest-priority pending/active task (none left -> finish)
  2. GUARD     a task still active after MAX_TASK_ATTEMPTS gets blocked
  3. INVOKE    mark active, count the attempt, run the agent with a fresh prompt
  4. CLASSIFY  unit marker, then the record on disk, then the signal detector
  5. PERSIST   task status, metrics and a run record every time

The loop stops when the unit finishes, a task blocks, the iteration budget
runs out or the user interrupts. Every stop leaves a run record on the unit
so the next run (or a human) knows where things stand.
"""

import logging
import signal
import sys
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Callable, Optional

from featureloop.agents.runner import AgentResult, Executor
from featureloop.lib.config import LoopConfig
from featureloop.lib.constants import (
    EXIT_BLOCKED,
    EXIT_INTERRUPTED,
    EXIT_OK,
    MAX_TASK_ATTEMPTS,
)
from featureloop.lib.signals import Signal, SignalClassifier, has_unit_complete_marker
from featureloop.state.dependencies import can_start
from featureloop.state.models import (
    Position,
    RunReason,
    RunRecord,
    Task,
    TaskStatus,
    now_iso,
)
from featureloop.state.store import UnitStore
from featureloop.workflow.lifecycle import UnitLifecycle
from featureloop.workflow.prompt_context import build_iteration_prompt
from featureloop.workflow.verification import ensure_verification

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_QUESTION = "The agent reported this task as blocked without saying why. What should it do next?"


@dataclass
class RunOutcome:
    """How a run ended, and what the human should do next."""
    status: str            # finished, blocked, budget_exhausted, dependency_unmet, no_work
    reason: Optional[RunReason]
    message: str
    exit_code: int = EXIT_OK
    iterations: int = 0
    next_steps: list[str] = field(default_factory=list)
    questions: dict[str, list[str]] = field(default_factory=dict)


@dataclass
class IterationContext:
    """Mutable state of one engine run, shared with the signal handlers."""
    store: UnitStore
    unit_id: str
    task_id: Optional[str] = None
    iteration: int = 0
    interrupted: bool = False

    def flush_interrupt(self) -> None:
        """Record the interruption once. Later calls do nothing."""
        if self.interrupted:
            return
        self.interrupted = True
        summary = f"Interrupted during iteration {self.iteration}"
        logger.warning(f"[ENGINE] {self.unit_id}: {summary}")
        self.store.record_run(
            self.unit_id,
            RunRecord(reason=RunReason.USER_INTERRUPTED, summary=summary, task_id=self.task_id),
        )
        self.store.append_progress(self.unit_id, f"- [{now_iso()}] Run interrupted by user")


@contextmanager
def interrupt_handlers(ctx: IterationContext):
    """Install SIGINT/SIGTERM handlers for a run, restoring the originals after.

    The handler records the interruption and exits with status 130. Further
    signals are ignored while the record is being written.
    """
    def _handler(signum, frame):
        if ctx.interrupted:
            return
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        ctx.flush_interrupt()
        sys.exit(EXIT_INTERRUPTED)

    original_sigint = signal.signal(signal.SIGINT, _handler)
    original_sigterm = signal.signal(signal.SIGTERM, _handler)
    try:
        yield ctx
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)


def blocked_next_steps(unit_id: str, tasks: list[Task]) -> list[str]:
    steps = []
    for task in tasks:
        answers = " ".join(["-a '...'"] * max(len(task.questions), 1))
        steps.append(f"featureloop answer {unit_id} {task.id} {answers}")
    steps.append(f"featureloop start {unit_id}")
    return steps


class Engine:
    """Runs the iteration loop for one unit at a time."""

    def __init__(
        self,
        store: UnitStore,
        executor: Executor,
        config: LoopConfig,
        classifier: SignalClassifier | None = None,
        checklist_generator: Callable[[UnitStore, str], object] | None = None,
    ):
        self.store = store
        self.executor = executor
        self.config = config
        self.classifier = classifier or SignalClassifier()
        self.checklist_generator = checklist_generator or self._default_checklist

    def _default_checklist(self, store: UnitStore, unit_id: str):
        return ensure_verification(
            store, unit_id, self.executor, self.config.testing.project_verification_instructions
        )

    def run(
        self,
        unit_id: str,
        max_iterations: int | None = None,
        handle_signals: bool = False,
    ) -> RunOutcome:
        """Run up to max_iterations iterations on a unit.

        Raises:
            UnitNotFound: If the unit doesn't exist.
            InvalidStructure: If its record is malformed.
            AgentLaunchError: If the agent can't be started.
        """
        budget = self.config.default_iterations if max_iterations is None else max_iterations
        position = self.store.locate(unit_id)
        if position is None:
            # read() raises the proper NotFound
            self.store.read(unit_id)

        if position == Position.COMPLETED:
            return RunOutcome("no_work", None, f"{unit_id} is already completed")
        if position == Position.TESTING:
            return RunOutcome(
                "no_work", None, f"{unit_id} is waiting for verification",
                next_steps=[f"featureloop test {unit_id}"],
            )

        check = can_start(self.store, unit_id)
        if not check.ok:
            message = f"{unit_id} depends on unfinished units: {', '.join(check.unmet)}"
            self.store.record_run(unit_id, RunRecord(reason=RunReason.DEPENDENCY_UNMET, summary=message))
            return RunOutcome(
                "dependency_unmet", RunReason.DEPENDENCY_UNMET, message,
                exit_code=EXIT_BLOCKED,
                next_steps=[f"featureloop start {dep}" for dep in check.unmet],
            )

        unit = self.store.read(unit_id)
        blocked = unit.blocked_tasks()
        if blocked:
            return self._blocked_outcome(unit_id, blocked, iterations=0)

        if position == Position.PENDING:
            UnitLifecycle(self.store, unit_id).fire("start")
        self.store.mark_started(unit_id)

        ctx = IterationContext(self.store, unit_id)
        guard = interrupt_handlers(ctx) if handle_signals else nullcontext()
        with guard:
            for i in range(1, budget + 1):
                ctx.iteration = i
                logger.info(f"[ENGINE] {unit_id}: iteration {i}/{budget}")
                outcome = self._iterate(ctx)
                if outcome is not None:
                    return outcome

        message = f"Used all {budget} iterations; {unit_id} still has open tasks"
        self.store.record_run(
            unit_id, RunRecord(reason=RunReason.MAX_ITERATIONS, summary=message, task_id=ctx.task_id)
        )
        return RunOutcome(
            "budget_exhausted", RunReason.MAX_ITERATIONS, message,
            iterations=budget,
            next_steps=[f"featureloop start {unit_id}"],
        )

    # ------------------------------------------------------------------

    def _iterate(self, ctx: IterationContext) -> Optional[RunOutcome]:
        unit_id = ctx.unit_id
        task = self.store.next_task(unit_id)

        if task is None:
            blocked = self.store.read(unit_id).blocked_tasks()
            if blocked:
                return self._blocked_outcome(unit_id, blocked, ctx.iteration - 1)
            return self._finish(ctx)

        ctx.task_id = task.id
        if task.status == TaskStatus.ACTIVE and (task.retries or 0) + 1 > MAX_TASK_ATTEMPTS:
            return self._auto_block(ctx, task)

        task = self.store.begin_attempt(unit_id, task.id)
        unit = self.store.read(unit_id)
        prompt = build_iteration_prompt(self.store, unit, task)
        log_file = self.store.logs_dir(unit_id) / f"iteration-{ctx.iteration:03d}-{task.id}.log"

        logger.info(f"[ENGINE] {unit_id}: running {self.executor.name} on {task.id} (attempt {task.retries})")
        result = self.executor.execute(prompt, log_file=log_file)
        self.store.add_metrics(unit_id, result.input_tokens, result.output_tokens)

        return self._classify(ctx, task, result)

    def _classify(self, ctx: IterationContext, task: Task, result: AgentResult) -> Optional[RunOutcome]:
        unit_id = ctx.unit_id
        current = self.store.read(unit_id).task(task.id)

        # The agent may have edited unit.json itself; blocked wins over any marker
        if current.status == TaskStatus.BLOCKED:
            return self._task_blocked(ctx, task, current.questions)
        if has_unit_complete_marker(result.output) or current.status == TaskStatus.COMPLETED:
            return self._task_completed(ctx, task)

        detection = self.classifier.classify(result.output, task.id)
        if detection.signal == Signal.COMPLETED:
            return self._task_completed(ctx, task)
        if detection.signal == Signal.BLOCKED:
            return self._task_blocked(ctx, task, detection.questions)

        if result.exit_code != 0:
            reason = RunReason.AGENT_ERROR
            summary = f"Agent exited with code {result.exit_code} and no completion signal on {task.id}"
        else:
            reason = RunReason.NO_SIGNAL
            summary = f"No completion signal for {task.id}; task left as-is"
        logger.warning(
            f"[ENGINE] {unit_id}: {summary}. Check the log, or mark it by hand with "
            f"'featureloop status {unit_id}'"
        )
        self.store.record_run(unit_id, RunRecord(reason=reason, summary=summary, task_id=task.id))
        self.store.append_progress(unit_id, f"- [{now_iso()}] {summary}")
        return None

    def _task_completed(self, ctx: IterationContext, task: Task) -> Optional[RunOutcome]:
        unit_id = ctx.unit_id
        self.store.set_task_status(unit_id, task.id, TaskStatus.COMPLETED)
        summary = f"{task.id} completed in iteration {ctx.iteration}"
        logger.info(f"[ENGINE] {unit_id}: {summary}")
        self.store.record_run(unit_id, RunRecord(reason=RunReason.TASK_COMPLETED, summary=summary, task_id=task.id))
        self.store.append_progress(unit_id, f"- [{now_iso()}] {summary}")

        if self.store.read(unit_id).all_tasks_completed():
            return self._finish(ctx)
        return None

    def _task_blocked(self, ctx: IterationContext, task: Task, questions: list[str]) -> RunOutcome:
        unit_id = ctx.unit_id
        questions = list(questions) or [DEFAULT_BLOCK_QUESTION]
        blocked = self.store.set_task_status(unit_id, task.id, TaskStatus.BLOCKED, questions=questions)
        summary = f"{task.id} blocked with {len(questions)} question(s)"
        logger.info(f"[ENGINE] {unit_id}: {summary}")
        self.store.record_run(unit_id, RunRecord(reason=RunReason.BLOCKED, summary=summary, task_id=task.id))
        self.store.append_progress(unit_id, f"- [{now_iso()}] {summary}")
        return self._blocked_outcome(unit_id, [blocked], ctx.iteration)

    def _auto_block(self, ctx: IterationContext, task: Task) -> RunOutcome:
        question = (
            f"{task.id} has been attempted {task.retries} times without successful completion. "
            f"Please review the task and give guidance on how to proceed."
        )
        logger.warning(f"[ENGINE] {ctx.unit_id}: {task.id} hit the attempt limit, blocking it")
        return self._task_blocked(ctx, task, [question])

    def _finish(self, ctx: IterationContext) -> RunOutcome:
        """All tasks done: move to testing and write the checklist."""
        unit_id = ctx.unit_id
        lifecycle = UnitLifecycle(self.store, unit_id)
        if lifecycle.position != Position.TESTING:
            lifecycle.fire("finish_tasks")

        self.checklist_generator(self.store, unit_id)

        summary = f"All tasks completed after {ctx.iteration} iteration(s)"
        self.store.record_run(unit_id, RunRecord(reason=RunReason.COMPLETED, summary=summary, task_id=ctx.task_id))
        self.store.append_progress(unit_id, f"- [{now_iso()}] {summary}; ready for verification")
        return RunOutcome(
            "finished", RunReason.COMPLETED, summary,
            iterations=ctx.iteration,
            next_steps=[f"featureloop test {unit_id}"],
        )

    def _blocked_outcome(self, unit_id: str, tasks: list[Task], iterations: int) -> RunOutcome:
        ids = ", ".join(t.id for t in tasks)
        return RunOutcome(
            "blocked", RunReason.BLOCKED, f"{unit_id} is blocked on {ids}",
            exit_code=EXIT_BLOCKED,
            iterations=iterations,
            next_steps=blocked_next_steps(unit_id, tasks),
            questions={t.id: list(t.questions) for t in tasks},
        )
