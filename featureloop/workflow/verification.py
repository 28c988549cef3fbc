"""
Verification checklist (verification.md) for units whose tasks are done.

The agent writes the checklist when it can; otherwise a plain checklist is
built from the completed tasks' acceptance criteria.
"""

import logging
from datetime import datetime
from pathlib import Path

from featureloop.agents.runner import Executor
from featureloop.lib.prompts import build_section, render_prompt
from featureloop.state.models import TaskStatus, Unit
from featureloop.state.store import UnitStore

logger = logging.getLogger(__name__)

CHECKLIST_HEADING = "# Verification Checklist"


def format_completed_tasks(unit: Unit) -> str:
    blocks = []
    for task in unit.tasks:
        if task.status != TaskStatus.COMPLETED:
            continue
        criteria = "\n".join(f"  - {c}" for c in task.acceptance_criteria)
        blocks.append(f"- {task.id}: {task.title}\n{criteria}" if criteria else f"- {task.id}: {task.title}")
    return "\n".join(blocks) or "(none)"


def extract_checklist(output: str) -> str | None:
    """Everything from the checklist heading on, or None if it's missing."""
    idx = output.find(CHECKLIST_HEADING)
    if idx == -1:
        return None
    return output[idx:].strip() + "\n"


def generate_simple_verification(unit: Unit) -> str:
    lines = [
        CHECKLIST_HEADING,
        "",
        f"Feature: {unit.name}",
        f"Generated: {datetime.now().isoformat(timespec='seconds')}",
        "",
        unit.description,
        "",
    ]
    for task in unit.tasks:
        if task.status != TaskStatus.COMPLETED:
            continue
        lines.append(f"## {task.id}: {task.title}")
        lines.append("")
        for criterion in task.acceptance_criteria:
            lines.append(f"- [ ] {criterion}")
        lines.append("")

    lines += [
        "## Code Quality",
        "",
        "- [ ] Type checks pass",
        "- [ ] Linting passes",
        "- [ ] Tests pass",
        "- [ ] No leftover debug output",
        "",
    ]
    return "\n".join(lines)


def generate_verification(
    store: UnitStore,
    unit_id: str,
    executor: Executor,
    project_instructions: str = "",
) -> str | None:
    """Ask the agent for a checklist. None if it fails or returns no checklist."""
    unit = store.read(unit_id)
    spec_text = store.read_spec(unit_id)
    prompt = render_prompt(
        "verification_checklist",
        unit_id=unit.name,
        unit_description=unit.description,
        completed_tasks=format_completed_tasks(unit),
        spec_section=build_section(spec_text or None, "## Specification"),
        progress=store.read_progress(unit_id) or "(empty)",
        project_instructions=build_section(project_instructions or None, "## Project Verification Notes"),
    )

    log_file = store.logs_dir(unit_id) / "verification-checklist.log"
    result = executor.execute(prompt, log_file=log_file)
    if not result.success:
        logger.warning(f"Checklist agent for {unit_id} exited with {result.exit_code}")
        return None

    checklist = extract_checklist(result.output)
    if checklist is None:
        logger.warning(f"Checklist agent for {unit_id} returned no '{CHECKLIST_HEADING}'")
    return checklist


def ensure_verification(
    store: UnitStore,
    unit_id: str,
    executor: Executor | None = None,
    project_instructions: str = "",
) -> Path:
    """Write verification.md, from the agent if possible, else the simple form."""
    checklist = None
    if executor is not None:
        checklist = generate_verification(store, unit_id, executor, project_instructions)
    if checklist is None:
        checklist = generate_simple_verification(store.read(unit_id))
        logger.info(f"Using simple verification checklist for {unit_id}")
    return store.write_verification(unit_id, checklist)
