"""Tests for featureloop.state.store."""

import json

import pytest

from conftest import make_task, make_unit
from featureloop.lib.errors import (
    AnswerMismatch,
    InvalidStructure,
    InvalidUnitId,
    TaskNotBlocked,
    TaskNotFound,
    UnitExists,
    UnitNotFound,
)
from featureloop.state.models import Position, RunReason, RunRecord, TaskStatus
from featureloop.state.store import UnitStore


class TestEnsureDirs:
    """Tests for UnitStore.ensure_dirs()."""

    def test_creates_all_positions(self, tmp_path):
        store = UnitStore(tmp_path / "state")
        store.ensure_dirs()
        for position in Position:
            assert (tmp_path / "state" / "units" / position.value).is_dir()

    def test_idempotent(self, tmp_path):
        store = UnitStore(tmp_path / "state")
        store.ensure_dirs()
        store.ensure_dirs()
        assert (tmp_path / "state" / "units" / "pending").is_dir()


class TestCreateAndRead:
    """Tests for creating and reading units."""

    def test_create_places_unit_in_pending(self, store):
        store.create(make_unit("auth"))
        assert store.locate("auth") == Position.PENDING

    def test_create_writes_progress_skeleton(self, store):
        store.create(make_unit("auth"))
        progress = store.read_progress("auth")
        assert "## Codebase Patterns" in progress
        assert "## Progress Log" in progress

    def test_create_writes_spec(self, store):
        store.create(make_unit("auth"), spec_text="# Auth spec")
        assert store.read_spec("auth") == "# Auth spec"

    def test_create_duplicate_raises(self, store):
        store.create(make_unit("auth"))
        with pytest.raises(UnitExists):
            store.create(make_unit("auth"))

    def test_create_rejects_bad_id(self, store):
        with pytest.raises(InvalidUnitId):
            store.create(make_unit("Bad Name"))

    def test_read_fills_position(self, store):
        store.create(make_unit("auth"))
        unit = store.read("auth")
        assert unit.position == Position.PENDING
        assert [t.id for t in unit.tasks] == ["US-001", "US-002"]

    def test_position_not_serialized(self, store):
        store.create(make_unit("auth"))
        data = json.loads((store.unit_dir("auth") / "unit.json").read_text())
        assert "position" not in data
        assert "stories" in data

    def test_read_missing_raises_not_found(self, store):
        with pytest.raises(UnitNotFound):
            store.read("nope")

    def test_read_malformed_json_raises(self, store):
        store.create(make_unit("auth"))
        (store.unit_dir("auth") / "unit.json").write_text("{not json")
        with pytest.raises(InvalidStructure):
            store.read("auth")

    @pytest.mark.parametrize("missing", ["name", "description", "stories"])
    def test_read_missing_required_field_raises(self, store, missing):
        store.create(make_unit("auth"))
        path = store.unit_dir("auth") / "unit.json"
        data = json.loads(path.read_text())
        del data[missing]
        path.write_text(json.dumps(data))
        with pytest.raises(InvalidStructure):
            store.read("auth")

    def test_malformed_record_is_not_repaired(self, store):
        store.create(make_unit("auth"))
        path = store.unit_dir("auth") / "unit.json"
        path.write_text("{not json")
        with pytest.raises(InvalidStructure):
            store.read("auth")
        assert path.read_text() == "{not json"

    def test_unknown_run_reason_raises_invalid_structure(self, store):
        store.create(make_unit("auth"))
        path = store.unit_dir("auth") / "unit.json"
        data = json.loads(path.read_text())
        data["lastRun"] = {"timestamp": "2024-01-01T00:00:00", "reason": "story_completed"}
        path.write_text(json.dumps(data))
        with pytest.raises(InvalidStructure):
            store.read("auth")


class TestWriteAndUpdate:
    """Tests for write() and update()."""

    def test_update_never_changes_name(self, store):
        store.create(make_unit("auth"))
        unit = store.update("auth", name="other", description="New")
        assert unit.name == "auth"
        assert store.read("auth").description == "New"

    def test_write_leaves_no_temp_files(self, store):
        store.create(make_unit("auth"))
        unit = store.read("auth")
        unit.description = "changed"
        store.write("auth", unit)
        leftovers = [p.name for p in store.unit_dir("auth").iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_write_refuses_invalid_record(self, store):
        store.create(make_unit("auth"))
        unit = store.read("auth")
        unit.name = ""
        with pytest.raises(InvalidStructure):
            store.write("auth", unit)
        assert store.read("auth").name == "auth"


class TestMove:
    """Tests for UnitStore.move()."""

    def test_move_changes_location(self, store):
        store.create(make_unit("auth"))
        store.move("auth", Position.PENDING, Position.ACTIVE)
        assert store.locate("auth") == Position.ACTIVE
        assert not (store.position_dir(Position.PENDING) / "auth").exists()

    def test_move_to_same_position_is_noop(self, store):
        store.create(make_unit("auth"))
        store.move("auth", Position.PENDING, Position.PENDING)
        assert store.locate("auth") == Position.PENDING

    def test_move_from_wrong_position_raises(self, store):
        store.create(make_unit("auth"))
        with pytest.raises(UnitNotFound):
            store.move("auth", Position.ACTIVE, Position.TESTING)

    def test_move_onto_existing_raises(self, store):
        store.create(make_unit("auth"))
        (store.position_dir(Position.ACTIVE) / "auth").mkdir(parents=True)
        with pytest.raises(UnitExists):
            store.move("auth", Position.PENDING, Position.ACTIVE)
        assert store.locate("auth") == Position.PENDING

    def test_side_files_move_with_unit(self, store):
        store.create(make_unit("auth"), spec_text="spec")
        store.append_progress("auth", "- did a thing")
        store.move("auth", Position.PENDING, Position.ACTIVE)
        assert store.read_spec("auth") == "spec"
        assert "- did a thing" in store.read_progress("auth")


class TestListUnits:
    """Tests for list_units()."""

    def test_lists_all_positions(self, store):
        store.create(make_unit("a"))
        store.create(make_unit("b"))
        store.move("b", Position.PENDING, Position.ACTIVE)
        assert [u.name for u in store.list_units()] == ["a", "b"]
        assert [u.name for u in store.list_units(Position.ACTIVE)] == ["b"]

    def test_skips_unreadable_units(self, store):
        store.create(make_unit("a"))
        store.create(make_unit("b"))
        (store.unit_dir("b") / "unit.json").write_text("garbage")
        assert [u.name for u in store.list_units()] == ["a"]

    def test_skips_unit_with_unknown_run_reason(self, store):
        store.create(make_unit("a"))
        store.create(make_unit("b"))
        path = store.unit_dir("b") / "unit.json"
        data = json.loads(path.read_text())
        data["lastRun"] = {"timestamp": "2024-01-01T00:00:00", "reason": "story_completed"}
        path.write_text(json.dumps(data))
        assert [u.name for u in store.list_units()] == ["a"]


class TestTaskOperations:
    """Tests for task status changes."""

    def test_completing_resets_retries(self, store):
        store.create(make_unit("auth", [make_task("US-001", retries=2)]))
        task = store.set_task_status("auth", "US-001", TaskStatus.COMPLETED)
        assert task.retries == 0

    def test_blocking_stores_questions(self, store):
        store.create(make_unit("auth"))
        store.set_task_status("auth", "US-001", TaskStatus.BLOCKED, questions=["Which DB?"])
        task = store.read("auth").task("US-001")
        assert task.status == TaskStatus.BLOCKED
        assert task.questions == ["Which DB?"]

    def test_unknown_task_raises(self, store):
        store.create(make_unit("auth"))
        with pytest.raises(TaskNotFound):
            store.set_task_status("auth", "US-999", TaskStatus.COMPLETED)

    def test_begin_attempt_counts(self, store):
        store.create(make_unit("auth"))
        store.begin_attempt("auth", "US-001")
        task = store.begin_attempt("auth", "US-001")
        assert task.status == TaskStatus.ACTIVE
        assert task.retries == 2

    def test_record_run_persists(self, store):
        store.create(make_unit("auth"))
        store.record_run("auth", RunRecord(reason=RunReason.NO_SIGNAL, summary="hm", task_id="US-001"))
        last = store.read("auth").last_run
        assert last.reason == RunReason.NO_SIGNAL
        assert last.task_id == "US-001"

    def test_add_metrics_accumulates(self, store):
        store.create(make_unit("auth"))
        store.add_metrics("auth", 100, 20)
        store.add_metrics("auth", 50, 5)
        m = store.read("auth").metrics
        assert (m.iterations, m.input_tokens, m.output_tokens, m.total_tokens) == (2, 150, 25, 175)


class TestUnblock:
    """Tests for unblock_task()."""

    @pytest.fixture
    def blocked_store(self, store):
        store.create(make_unit("auth"))
        store.set_task_status("auth", "US-001", TaskStatus.BLOCKED, questions=["Q1?", "Q2?"])
        return store

    def test_unblock_sets_pending_with_answers(self, blocked_store):
        task = blocked_store.unblock_task("auth", "US-001", ["A1", "A2"])
        assert task.status == TaskStatus.PENDING
        assert task.answers == ["A1", "A2"]
        assert task.retries == 0

    def test_answer_count_must_match(self, blocked_store):
        with pytest.raises(AnswerMismatch):
            blocked_store.unblock_task("auth", "US-001", ["only one"])
        assert blocked_store.read("auth").task("US-001").status == TaskStatus.BLOCKED

    def test_task_must_be_blocked(self, blocked_store):
        with pytest.raises(TaskNotBlocked):
            blocked_store.unblock_task("auth", "US-002", [])


class TestFixTasks:
    """Tests for remedial fix tasks."""

    def test_first_fix_task(self, store):
        store.create(make_unit("auth"))
        task = store.add_fix_task("auth", ["Login button missing", "500 on submit"])
        assert task.id == "FIX-001"
        assert task.priority == 1
        assert task.status == TaskStatus.PENDING
        assert task.questions == []
        assert task.acceptance_criteria == [
            "Fix: Login button missing",
            "Fix: 500 on submit",
            "Ensure all items in verification.md pass",
            "All project quality checks must pass",
        ]

    def test_fix_ids_increment(self, store):
        store.create(make_unit("auth"))
        store.add_fix_task("auth", ["a"])
        task = store.add_fix_task("auth", ["b"])
        assert task.id == "FIX-002"


class TestTestResults:
    """Tests for the test-results directory."""

    def test_clear_recreates_evidence_dirs(self, store):
        store.create(make_unit("auth"))
        results = store.test_results_dir("auth")
        (results / "old.txt").write_text("x")
        store.clear_test_results("auth")
        assert not (results / "old.txt").exists()
        assert (results / "screenshots").is_dir()
        assert (results / "api-responses").is_dir()
