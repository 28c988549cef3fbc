"""Tests for featureloop.state.models."""

from conftest import make_task, make_unit
from featureloop.state.models import Metrics, RunReason, RunRecord, Task, TaskStatus, Unit, select_task


class TestSelectTask:
    """Tests for select_task()."""

    def test_lowest_priority_first(self):
        tasks = [make_task("A", 3), make_task("B", 1), make_task("C", 2)]
        assert select_task(tasks).id == "B"

    def test_ties_keep_declaration_order(self):
        tasks = [make_task("A", 2), make_task("B", 1), make_task("C", 1)]
        assert select_task(tasks).id == "B"

    def test_skips_blocked_and_completed(self):
        tasks = [
            make_task("A", 1, TaskStatus.BLOCKED),
            make_task("B", 1, TaskStatus.COMPLETED),
            make_task("C", 5),
        ]
        assert select_task(tasks).id == "C"

    def test_active_is_eligible(self):
        tasks = [make_task("A", 2), make_task("B", 1, TaskStatus.ACTIVE)]
        assert select_task(tasks).id == "B"

    def test_none_when_nothing_eligible(self):
        tasks = [make_task("A", 1, TaskStatus.BLOCKED), make_task("B", 1, TaskStatus.COMPLETED)]
        assert select_task(tasks) is None

    def test_empty_list(self):
        assert select_task([]) is None


class TestSerialization:
    """Tests for the JSON shape of units."""

    def test_task_uses_camel_case_keys(self):
        data = make_task("US-001", answers=["yes"], retries=1).to_dict()
        assert data["acceptanceCriteria"] == ["US-001 works"]
        assert data["answers"] == ["yes"]
        assert data["retries"] == 1

    def test_optional_task_fields_omitted(self):
        data = make_task("US-001").to_dict()
        assert "answers" not in data
        assert "retries" not in data

    def test_unit_round_trip_keeps_run_and_metrics(self):
        unit = make_unit("auth", dependencies=["db"])
        unit.last_run = RunRecord(reason=RunReason.BLOCKED, summary="s", task_id="US-001")
        unit.metrics = Metrics(iterations=2, input_tokens=10, output_tokens=5, total_tokens=15)

        loaded = Unit.from_dict(unit.to_dict())
        assert loaded.dependencies == ["db"]
        assert loaded.last_run.reason == RunReason.BLOCKED
        assert loaded.metrics.total_tokens == 15
        assert loaded.position is None

    def test_task_from_dict_defaults(self):
        task = Task.from_dict({"id": "X", "title": "t", "acceptanceCriteria": [], "status": "pending", "priority": 1})
        assert task.questions == []
        assert task.answers is None


class TestUnitHelpers:
    """Tests for Unit convenience methods."""

    def test_all_tasks_completed(self):
        unit = make_unit(tasks=[make_task("A", status=TaskStatus.COMPLETED)])
        assert unit.all_tasks_completed()

    def test_progress_counts(self):
        unit = make_unit(tasks=[make_task("A", status=TaskStatus.COMPLETED), make_task("B")])
        assert unit.progress() == (1, 2)
