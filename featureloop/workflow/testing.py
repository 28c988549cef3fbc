"""Verification pass for units in the testing position.

Sequence:
  1. teardown -> setup -> start -> poll health check, with a fix agent and
     retry when the health check fails (capped; gives up and continues)
  2. QA agent over the full checklist, or only the items that failed in the
     last saved report
  3. verified  -> save findings, optional docs update, move to completed
     failed    -> add a FIX-00N task, move back to active
     no marker -> stay in testing for a human to decide

Teardown runs again before returning, whatever happened.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from featureloop.agents.runner import Executor
from featureloop.lib.config import LoopConfig
from featureloop.lib.constants import EXIT_BLOCKED, EXIT_ERROR, EXIT_OK, HEALTH_CHECK_INTERVAL, REPORT_FILE
from featureloop.lib.errors import AgentLaunchError, InvalidTransition, UnitNotFound
from featureloop.lib.findings import extract_findings, format_findings, save_findings
from featureloop.lib.prompts import build_section, render_prompt
from featureloop.lib.signals import HealthFixSignal, VerificationSignal, detect_healthcheck_fix
from featureloop.state.models import Position, RunReason, RunRecord, now_iso
from featureloop.state.store import UnitStore
from featureloop.workflow.lifecycle import UnitLifecycle, move_unit
from featureloop.workflow.report import QAReport, load_previous_failures, parse_qa_report, save_report
from featureloop.workflow.scripts import run_script, wait_for_health_check
from featureloop.workflow.verification import ensure_verification, format_completed_tasks

logger = logging.getLogger(__name__)

NO_ISSUES_REPORTED = "Verification failed without specific issues; see test-results/report.md"


@dataclass
class VerificationOutcome:
    result: VerificationSignal
    message: str
    report_path: Optional[Path] = None
    issues: list[str] = field(default_factory=list)
    fix_task_id: Optional[str] = None
    exit_code: int = EXIT_OK
    next_steps: list[str] = field(default_factory=list)


class VerificationLoop:
    """Runs one verification pass over a unit."""

    def __init__(
        self,
        store: UnitStore,
        executor: Executor,
        config: LoopConfig,
        sleep: Callable[[float], None] | None = None,
    ):
        self.store = store
        self.executor = executor
        self.config = config
        self.project_dir = config.project_dir
        self.sleep = sleep

    def run(self, unit_id: str) -> VerificationOutcome:
        """Verify a unit.

        Raises:
            UnitNotFound: If the unit doesn't exist.
            InvalidTransition: If the unit isn't in testing.
        """
        position = self.store.locate(unit_id)
        if position is None:
            raise UnitNotFound(unit_id)
        if position != Position.TESTING:
            raise InvalidTransition(unit_id, position.value, Position.COMPLETED.value)

        if not self.store.has_verification(unit_id):
            logger.info(f"[TESTING] No checklist for {unit_id}, generating one")
            ensure_verification(
                self.store, unit_id, self.executor,
                self.config.testing.project_verification_instructions,
            )

        report_path = self.store.test_results_dir(unit_id) / REPORT_FILE
        previous_failures = load_previous_failures(report_path)
        if previous_failures:
            logger.info(f"[TESTING] Focused retest of {len(previous_failures)} previous failure(s)")
        else:
            self.store.clear_test_results(unit_id)

        try:
            self.prepare_environment(unit_id)
            report = self._run_qa(unit_id, previous_failures)
            save_report(report_path, unit_id, report, focused=bool(previous_failures))

            if report.result == VerificationSignal.VERIFIED:
                return self._on_verified(unit_id, report_path)
            if report.result == VerificationSignal.FAILED:
                return self._on_failed(unit_id, report, report_path)
            return self._on_unclear(unit_id, report_path)
        finally:
            run_script(self.config.scripts.teardown, unit_id, self.project_dir, name="teardown")

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def prepare_environment(self, unit_id: str) -> bool:
        """Bring the app up healthy. False means we continue without it."""
        scripts = self.config.scripts
        max_attempts = self.config.testing.max_health_fix_attempts

        for attempt in range(1, max_attempts + 1):
            run_script(scripts.teardown, unit_id, self.project_dir, name="teardown")

            failure = None
            for name in ("setup", "start"):
                result = run_script(getattr(scripts, name), unit_id, self.project_dir, name=name)
                if not result.ok:
                    failure = f"{name} script failed (exit {result.exit_code}):\n{result.output}"
                    break

            if failure is None:
                kwargs = {"sleep": self.sleep} if self.sleep else {}
                health = wait_for_health_check(
                    scripts.health_check, unit_id, self.project_dir,
                    timeout=self.config.testing.health_check_timeout,
                    interval=HEALTH_CHECK_INTERVAL,
                    **kwargs,
                )
                if health.ok:
                    return True
                failure = f"health check failed (exit {health.exit_code}):\n{health.output}"

            logger.warning(f"[TESTING] {unit_id}: environment attempt {attempt}/{max_attempts} failed")
            if attempt >= max_attempts:
                break
            if self._run_health_fix(unit_id, attempt, max_attempts, failure) != HealthFixSignal.FIXED:
                logger.warning(f"[TESTING] {unit_id}: fix agent could not repair the environment, continuing anyway")
                return False

        logger.warning(f"[TESTING] {unit_id}: environment still unhealthy after {max_attempts} attempts, continuing anyway")
        return False

    def _run_health_fix(self, unit_id: str, attempt: int, max_attempts: int, failure: str) -> HealthFixSignal:
        scripts = self.config.scripts
        listed = "\n".join(
            f"- {name}: {path}"
            for name, path in (
                ("setup", scripts.setup),
                ("start", scripts.start),
                ("health check", scripts.health_check),
                ("teardown", scripts.teardown),
            )
            if path
        )
        prompt = render_prompt(
            "healthcheck_fix",
            unit_id=unit_id,
            attempt=attempt,
            max_attempts=max_attempts,
            failure_output=failure.strip() or "(no output)",
            scripts_section=build_section(listed or None, "## Environment Scripts"),
        )
        log_file = self.store.logs_dir(unit_id) / f"healthcheck-fix-{attempt}.log"
        result = self.executor.execute(prompt, log_file=log_file)
        signal = detect_healthcheck_fix(result.output)
        logger.info(f"[TESTING] {unit_id}: fix agent reported {signal.value}")
        return signal

    # ------------------------------------------------------------------
    # QA
    # ------------------------------------------------------------------

    def _run_qa(self, unit_id: str, previous_failures: list[str]) -> QAReport:
        unit = self.store.read(unit_id)
        spec_text = self.store.read_spec(unit_id)
        evidence_dir = self.store.test_results_dir(unit_id)
        instructions = build_section(self.config.testing.instructions or None, "## Testing Instructions")
        spec_section = build_section(spec_text or None, "## Specification")
        progress = self.store.read_progress(unit_id) or "(empty)"

        if previous_failures:
            prompt = render_prompt(
                "qa_retest",
                unit_id=unit_id,
                failed_items="\n".join(f"{i}. {f}" for i, f in enumerate(previous_failures, 1)),
                spec_section=spec_section,
                progress=progress,
                instructions_section=instructions,
                evidence_dir=evidence_dir,
            )
        else:
            prompt = render_prompt(
                "qa_full",
                unit_id=unit_id,
                unit_json=json.dumps(unit.to_dict(), indent=2),
                spec_section=spec_section,
                checklist=self.store.read_verification(unit_id),
                progress=progress,
                instructions_section=instructions,
                evidence_dir=evidence_dir,
            )

        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        log_file = self.store.logs_dir(unit_id) / f"verification-{stamp}.log"
        logger.info(f"[TESTING] {unit_id}: running QA agent {self.executor.name}")
        result = self.executor.execute(prompt, log_file=log_file)
        self.store.add_metrics(unit_id, result.input_tokens, result.output_tokens)
        return parse_qa_report(result.output)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _on_verified(self, unit_id: str, report_path: Path) -> VerificationOutcome:
        unit = self.store.read(unit_id)
        progress = self.store.read_progress(unit_id)
        save_findings(unit.name, progress, self.store.findings_path(), self.store.findings_path(unit_id))
        self._update_docs(unit_id, progress)

        UnitLifecycle(self.store, unit_id).fire("verify")
        self.store.mark_completed(unit_id)
        summary = "Verification passed"
        self.store.record_run(unit_id, RunRecord(reason=RunReason.VERIFIED, summary=summary))
        self.store.append_progress(unit_id, f"- [{now_iso()}] {summary}; unit completed")
        return VerificationOutcome(
            VerificationSignal.VERIFIED, f"{unit_id} verified and completed", report_path=report_path,
        )

    def _on_failed(self, unit_id: str, report: QAReport, report_path: Path) -> VerificationOutcome:
        issues = report.issues or report.failure_descriptions() or [NO_ISSUES_REPORTED]
        fix_task = self.store.add_fix_task(unit_id, issues)

        UnitLifecycle(self.store, unit_id).fire("reject")
        summary = f"Verification failed with {len(issues)} issue(s); added {fix_task.id}"
        self.store.record_run(
            unit_id, RunRecord(reason=RunReason.VERIFICATION_FAILED, summary=summary, task_id=fix_task.id)
        )
        self.store.append_progress(unit_id, f"- [{now_iso()}] {summary}")
        return VerificationOutcome(
            VerificationSignal.FAILED, summary,
            report_path=report_path,
            issues=issues,
            fix_task_id=fix_task.id,
            exit_code=EXIT_ERROR,
            next_steps=[f"featureloop start {unit_id}", f"featureloop test {unit_id}"],
        )

    def _on_unclear(self, unit_id: str, report_path: Path) -> VerificationOutcome:
        summary = "QA agent gave no verification result; manual review needed"
        self.store.record_run(unit_id, RunRecord(reason=RunReason.VERIFICATION_UNCLEAR, summary=summary))
        logger.warning(f"[TESTING] {unit_id}: {summary}")
        return VerificationOutcome(
            VerificationSignal.UNKNOWN, summary,
            report_path=report_path,
            exit_code=EXIT_BLOCKED,
            next_steps=[
                f"Review {report_path}",
                f"featureloop test {unit_id}",
                f"featureloop complete {unit_id}",
                f"featureloop move {unit_id} active",
            ],
        )

    def _update_docs(self, unit_id: str, progress: str) -> None:
        docs = self.config.docs
        if not docs.path or not docs.auto_update:
            return
        unit = self.store.read(unit_id)
        findings = extract_findings(progress)
        prompt = render_prompt(
            "docs_update",
            unit_id=unit_id,
            unit_description=unit.description,
            docs_path=docs.path,
            completed_tasks=format_completed_tasks(unit),
            findings=format_findings(unit.name, findings) if not findings.is_empty() else "(none)",
        )
        log_file = self.store.logs_dir(unit_id) / "docs-update.log"
        try:
            result = self.executor.execute(prompt, log_file=log_file)
        except AgentLaunchError as e:
            logger.warning(f"[TESTING] Docs update for {unit_id} could not start: {e}")
            return
        if not result.success:
            logger.warning(f"[TESTING] Docs update for {unit_id} exited with {result.exit_code}")


def complete_unit(store: UnitStore, unit_id: str) -> Position:
    """Mark a unit completed by hand, saving its findings on the way."""
    position = store.locate(unit_id)
    if position is None:
        raise UnitNotFound(unit_id)
    if position == Position.COMPLETED:
        return position

    unit = store.read(unit_id)
    save_findings(unit.name, store.read_progress(unit_id), store.findings_path(), store.findings_path(unit_id))
    move_unit(store, unit_id, Position.COMPLETED, force=True)
    store.mark_completed(unit_id)
    store.record_run(unit_id, RunRecord(reason=RunReason.VERIFIED, summary="Marked complete by hand"))
    return Position.COMPLETED
