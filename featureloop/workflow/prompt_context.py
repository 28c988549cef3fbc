"""
Build the per-iteration agent prompt from unit state.

The prompt carries only what the agent needs for one task: the unit
description, the task's acceptance criteria, answers to earlier questions,
sibling task titles, a spec excerpt, codebase patterns and the tail of the
progress log.
"""

import logging

from featureloop.lib.constants import PROGRESS_FILE, PROGRESS_TAIL_LINES, SPEC_EXCERPT_CHARS
from featureloop.lib.findings import extract_patterns
from featureloop.lib.prompts import build_section, render_prompt
from featureloop.state.models import Task, Unit
from featureloop.state.store import UnitStore

logger = logging.getLogger(__name__)


def tail_lines(text: str, n: int = PROGRESS_TAIL_LINES) -> str:
    lines = text.rstrip("\n").splitlines()
    return "\n".join(lines[-n:])


def truncate(text: str, limit: int = SPEC_EXCERPT_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n\n[... truncated ...]"


def format_criteria(criteria: list[str]) -> str:
    if not criteria:
        return "- (none listed)"
    return "\n".join(f"- {c}" for c in criteria)


def format_answers(task: Task) -> str:
    """Earlier Q&A for a task that was blocked and then answered."""
    if not task.questions or not task.answers:
        return ""
    pairs = "\n".join(
        f"- Q: {q}\n  A: {a}" for q, a in zip(task.questions, task.answers)
    )
    return build_section(pairs, "### Answers to Your Earlier Questions")


def format_siblings(unit: Unit, current: Task) -> str:
    lines = []
    for t in unit.tasks:
        marker = " <- current" if t.id == current.id else ""
        lines.append(f"- {t.id}: {t.title} [{t.status.value}]{marker}")
    return "\n".join(lines)


def build_iteration_prompt(store: UnitStore, unit: Unit, task: Task) -> str:
    progress = store.read_progress(unit.name)
    spec_text = store.read_spec(unit.name)
    patterns = extract_patterns(progress)

    return render_prompt(
        "iteration",
        unit_id=unit.name,
        unit_description=unit.description,
        task_id=task.id,
        task_title=task.title,
        acceptance_criteria=format_criteria(task.acceptance_criteria),
        answers_section=format_answers(task),
        siblings=format_siblings(unit, task),
        spec_section=build_section(truncate(spec_text) if spec_text else None, "## Specification"),
        patterns_section=build_section(
            "\n".join(f"- {p}" for p in patterns) if patterns else None,
            "## Codebase Patterns",
        ),
        progress_tail=tail_lines(progress) or "(no progress yet)",
        progress_path=store.unit_dir(unit.name) / PROGRESS_FILE,
    )
