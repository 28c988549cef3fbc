"""
Persistent store for units.

Layout under the state root:

  <root>/units/<position>/<unit_id>/unit.json
                                   /spec.md
                                   /progress.txt
                                   /verification.md
                                   /findings.md
                                   /test-results/
                                   /logs/
  <root>/findings.md
  <root>/runs.json

The directory a unit lives in IS its lifecycle position. Moving a unit is a
directory rename, so a unit is always in exactly one position.

unit.json is validated against schemas/unit.schema.json on every read and
before every write, and written atomically (temp file + rename). The progress
log is append-only and not atomic; a crash can lose at most the last append.
"""

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from featureloop.lib.constants import (
    FINDINGS_FILE,
    FIX_STANDING_CRITERIA,
    FIX_TASK_PREFIX,
    FIX_TASK_PRIORITY,
    LOGS_DIR,
    PROGRESS_FILE,
    SPEC_FILE,
    TEST_RESULTS_DIR,
    UNIT_FILE,
    VERIFICATION_FILE,
    valid_unit_id,
)
from featureloop.lib.errors import (
    AnswerMismatch,
    InvalidStructure,
    InvalidUnitId,
    TaskNotBlocked,
    TaskNotFound,
    UnitExists,
    UnitNotFound,
)
from featureloop.lib.validate import ValidationError, validate, validate_before_write
from featureloop.state.models import (
    Position,
    RunRecord,
    Task,
    TaskStatus,
    Unit,
    now_iso,
    select_task,
)

logger = logging.getLogger(__name__)

PROGRESS_SKELETON = """# Progress Log: {name}

## Codebase Patterns

---

## Progress Log

"""


def atomic_write_text(path: Path, content: str) -> None:
    """Write via a temp file in the same directory, then rename over path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class UnitStore:
    """All reads and writes of unit state go through here."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.units_dir = self.root / "units"

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def ensure_dirs(self) -> None:
        """Create the position directories. Safe to call repeatedly."""
        for position in Position:
            (self.units_dir / position.value).mkdir(parents=True, exist_ok=True)

    def position_dir(self, position: Position) -> Path:
        return self.units_dir / Position(position).value

    def locate(self, unit_id: str) -> Optional[Position]:
        """Return the position holding unit_id, or None."""
        for position in Position:
            if (self.position_dir(position) / unit_id / UNIT_FILE).exists():
                return position
        return None

    def unit_dir(self, unit_id: str) -> Path:
        position = self.locate(unit_id)
        if position is None:
            raise UnitNotFound(unit_id)
        return self.position_dir(position) / unit_id

    def exists(self, unit_id: str) -> bool:
        return self.locate(unit_id) is not None

    # ------------------------------------------------------------------
    # Unit records
    # ------------------------------------------------------------------

    def read(self, unit_id: str) -> Unit:
        """Read a unit, with its position filled in.

        Raises:
            UnitNotFound: If no position holds the unit.
            InvalidStructure: If unit.json is unparseable or fails the schema.
        """
        position = self.locate(unit_id)
        if position is None:
            raise UnitNotFound(unit_id)

        path = self.position_dir(position) / unit_id / UNIT_FILE
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise InvalidStructure(path, f"invalid JSON: {e}") from None

        try:
            validate(data, "unit")
        except ValidationError as e:
            raise InvalidStructure(path, str(e)) from None

        try:
            return Unit.from_dict(data, position=position)
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidStructure(path, f"bad field: {e}") from None

    def write(self, unit_id: str, unit: Unit) -> None:
        """Overwrite unit.json for an existing unit."""
        path = self.unit_dir(unit_id) / UNIT_FILE
        self._write_record(path, unit)

    def _write_record(self, path: Path, unit: Unit) -> None:
        data = unit.to_dict()
        try:
            validate_before_write(data, "unit", path)
        except ValidationError as e:
            raise InvalidStructure(path, str(e)) from None
        atomic_write_text(path, json.dumps(data, indent=2) + "\n")

    def update(self, unit_id: str, **changes) -> Unit:
        """Read, apply attribute changes, write. The unit name never changes."""
        unit = self.read(unit_id)
        changes.pop("name", None)
        changes.pop("position", None)
        for key, value in changes.items():
            if not hasattr(unit, key):
                raise AttributeError(f"Unit has no field '{key}'")
            setattr(unit, key, value)
        self.write(unit_id, unit)
        return unit

    def create(self, unit: Unit, spec_text: str | None = None) -> Unit:
        """Create a new unit in the pending position.

        Raises:
            InvalidUnitId: If the name can't be used as a directory.
            UnitExists: If any position already holds this id.
        """
        if not valid_unit_id(unit.name):
            raise InvalidUnitId(unit.name)

        existing = self.locate(unit.name)
        if existing is not None:
            raise UnitExists(unit.name, existing.value)

        self.ensure_dirs()
        unit_dir = self.position_dir(Position.PENDING) / unit.name
        unit_dir.mkdir(parents=True)
        (unit_dir / TEST_RESULTS_DIR).mkdir()
        (unit_dir / LOGS_DIR).mkdir()

        self._write_record(unit_dir / UNIT_FILE, unit)
        (unit_dir / PROGRESS_FILE).write_text(PROGRESS_SKELETON.format(name=unit.name))
        if spec_text:
            (unit_dir / SPEC_FILE).write_text(spec_text)

        logger.info(f"Created unit {unit.name} with {len(unit.tasks)} task(s)")
        unit.position = Position.PENDING
        return unit

    def move(self, unit_id: str, from_position: Position, to_position: Position) -> None:
        """Move a unit's directory between positions.

        Moving to the same position is a no-op.

        Raises:
            UnitNotFound: If the unit is not in from_position.
            UnitExists: If to_position already holds the unit.
        """
        from_position = Position(from_position)
        to_position = Position(to_position)
        if from_position == to_position:
            return

        src = self.position_dir(from_position) / unit_id
        dst = self.position_dir(to_position) / unit_id
        if not (src / UNIT_FILE).exists():
            raise UnitNotFound(unit_id)
        if dst.exists():
            raise UnitExists(unit_id, to_position.value)

        dst.parent.mkdir(parents=True, exist_ok=True)
        os.rename(src, dst)
        logger.debug(f"Moved {unit_id}: {from_position.value} -> {to_position.value}")

    def list_units(self, position: Position | None = None) -> list[Unit]:
        """All readable units, optionally in one position, sorted by name.

        Unreadable records are logged and skipped so one bad unit doesn't hide
        the rest.
        """
        positions = [Position(position)] if position else list(Position)
        units = []
        for pos in positions:
            pos_dir = self.position_dir(pos)
            if not pos_dir.exists():
                continue
            for unit_dir in sorted(pos_dir.iterdir()):
                if not (unit_dir / UNIT_FILE).exists():
                    continue
                try:
                    units.append(self.read(unit_dir.name))
                except InvalidStructure as e:
                    logger.warning(f"Skipping unreadable unit {unit_dir.name}: {e}")
        return units

    # ------------------------------------------------------------------
    # Side files
    # ------------------------------------------------------------------

    def append_progress(self, unit_id: str, text: str) -> None:
        path = self.unit_dir(unit_id) / PROGRESS_FILE
        with open(path, "a") as f:
            f.write(text if text.endswith("\n") else text + "\n")

    def read_progress(self, unit_id: str) -> str:
        path = self.unit_dir(unit_id) / PROGRESS_FILE
        return path.read_text() if path.exists() else ""

    def read_spec(self, unit_id: str) -> str:
        path = self.unit_dir(unit_id) / SPEC_FILE
        return path.read_text() if path.exists() else ""

    def has_verification(self, unit_id: str) -> bool:
        return (self.unit_dir(unit_id) / VERIFICATION_FILE).exists()

    def read_verification(self, unit_id: str) -> str:
        path = self.unit_dir(unit_id) / VERIFICATION_FILE
        return path.read_text() if path.exists() else ""

    def write_verification(self, unit_id: str, content: str) -> Path:
        path = self.unit_dir(unit_id) / VERIFICATION_FILE
        atomic_write_text(path, content)
        return path

    def findings_path(self, unit_id: str | None = None) -> Path:
        """Per-unit findings file, or the global one when unit_id is None."""
        if unit_id is None:
            return self.root / FINDINGS_FILE
        return self.unit_dir(unit_id) / FINDINGS_FILE

    def test_results_dir(self, unit_id: str) -> Path:
        path = self.unit_dir(unit_id) / TEST_RESULTS_DIR
        path.mkdir(parents=True, exist_ok=True)
        return path

    def clear_test_results(self, unit_id: str) -> Path:
        """Empty test-results/ and recreate its evidence subdirectories."""
        path = self.unit_dir(unit_id) / TEST_RESULTS_DIR
        if path.exists():
            shutil.rmtree(path)
        (path / "screenshots").mkdir(parents=True)
        (path / "api-responses").mkdir()
        return path

    def logs_dir(self, unit_id: str) -> Path:
        path = self.unit_dir(unit_id) / LOGS_DIR
        path.mkdir(parents=True, exist_ok=True)
        return path

    # ------------------------------------------------------------------
    # Task operations
    # ------------------------------------------------------------------

    def next_task(self, unit_id: str) -> Optional[Task]:
        return select_task(self.read(unit_id).tasks)

    def set_task_status(
        self,
        unit_id: str,
        task_id: str,
        status: TaskStatus,
        questions: list[str] | None = None,
    ) -> Task:
        """Set a task's status.

        Completing a task resets its retry counter. Blocking stores the open
        questions and clears any stale answers.
        """
        unit = self.read(unit_id)
        task = unit.task(task_id)
        if task is None:
            raise TaskNotFound(unit_id, task_id)

        task.status = TaskStatus(status)
        if task.status == TaskStatus.COMPLETED:
            task.retries = 0
        elif task.status == TaskStatus.BLOCKED:
            task.questions = list(questions or [])
            task.answers = None

        self.write(unit_id, unit)
        return task

    def begin_attempt(self, unit_id: str, task_id: str) -> Task:
        """Mark a task active and count the attempt."""
        unit = self.read(unit_id)
        task = unit.task(task_id)
        if task is None:
            raise TaskNotFound(unit_id, task_id)
        task.status = TaskStatus.ACTIVE
        task.retries = (task.retries or 0) + 1
        self.write(unit_id, unit)
        return task

    def unblock_task(self, unit_id: str, task_id: str, answers: list[str]) -> Task:
        """Supply answers to a blocked task and return it to pending.

        The retry counter is reset so the answered task gets a fresh budget.

        Raises:
            TaskNotFound, TaskNotBlocked, AnswerMismatch
        """
        unit = self.read(unit_id)
        task = unit.task(task_id)
        if task is None:
            raise TaskNotFound(unit_id, task_id)
        if task.status != TaskStatus.BLOCKED:
            raise TaskNotBlocked(unit_id, task_id, task.status.value)
        if len(answers) != len(task.questions):
            raise AnswerMismatch(unit_id, task_id, len(task.questions), len(answers))

        task.answers = list(answers)
        task.status = TaskStatus.PENDING
        task.retries = 0
        self.write(unit_id, unit)
        logger.info(f"Unblocked {unit_id}/{task_id}")
        return task

    def record_run(self, unit_id: str, record: RunRecord) -> None:
        self.update(unit_id, last_run=record)

    def mark_started(self, unit_id: str) -> None:
        unit = self.read(unit_id)
        if not unit.started_at:
            unit.started_at = now_iso()
            self.write(unit_id, unit)

    def mark_completed(self, unit_id: str) -> None:
        self.update(unit_id, completed_at=now_iso())

    def add_metrics(self, unit_id: str, input_tokens: int = 0, output_tokens: int = 0) -> None:
        """Count one iteration plus its token usage."""
        unit = self.read(unit_id)
        unit.metrics.add(input_tokens=input_tokens, output_tokens=output_tokens)
        self.write(unit_id, unit)

    def next_fix_task_id(self, unit: Unit) -> str:
        nums = []
        for task in unit.tasks:
            if task.id.startswith(FIX_TASK_PREFIX):
                try:
                    nums.append(int(task.id[len(FIX_TASK_PREFIX):]))
                except ValueError:
                    logger.warning(f"Malformed fix task id ignored: {task.id}")
        return f"{FIX_TASK_PREFIX}{max(nums, default=0) + 1:03d}"

    def add_fix_task(self, unit_id: str, issues: list[str]) -> Task:
        """Append a remedial task built from verification issues."""
        unit = self.read(unit_id)
        task = Task(
            id=self.next_fix_task_id(unit),
            title="Fix verification failures",
            acceptance_criteria=[f"Fix: {issue}" for issue in issues] + FIX_STANDING_CRITERIA,
            status=TaskStatus.PENDING,
            priority=FIX_TASK_PRIORITY,
            questions=[],
        )
        unit.tasks.append(task)
        self.write(unit_id, unit)
        logger.info(f"Added {task.id} to {unit_id} with {len(issues)} issue(s)")
        return task
