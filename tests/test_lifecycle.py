"""Tests for featureloop.workflow.lifecycle."""

import logging

import pytest

from conftest import make_unit
from featureloop.lib.errors import InvalidTransition, UnitNotFound
from featureloop.state.models import Position
from featureloop.workflow.lifecycle import STATES, TRANSITIONS, TRIGGER_FOR, UnitLifecycle, move_unit


class TestDefinitions:
    """Tests for states and transitions."""

    def test_states_match_positions(self):
        assert STATES == ["pending", "active", "testing", "completed"]

    def test_every_transition_uses_known_states(self):
        for t in TRANSITIONS:
            assert t["source"] in STATES
            assert t["dest"] in STATES

    def test_trigger_lookup(self):
        assert TRIGGER_FOR[("pending", "active")] == "start"
        assert TRIGGER_FOR[("testing", "active")] == "reject"


class TestUnitLifecycle:
    """Tests for UnitLifecycle."""

    @pytest.fixture
    def created(self, store):
        store.create(make_unit("auth"))
        return store

    def test_initial_state_from_location(self, created):
        created.move("auth", Position.PENDING, Position.TESTING)
        assert UnitLifecycle(created, "auth").state == "testing"

    def test_unknown_unit(self, store):
        with pytest.raises(UnitNotFound):
            UnitLifecycle(store, "nope")

    def test_transition_moves_directory(self, created):
        lc = UnitLifecycle(created, "auth")
        lc.start()
        assert lc.state == "active"
        assert created.locate("auth") == Position.ACTIVE

    def test_full_happy_path(self, created):
        lc = UnitLifecycle(created, "auth")
        lc.fire("start")
        lc.fire("finish_tasks")
        lc.fire("verify")
        assert created.locate("auth") == Position.COMPLETED

    def test_illegal_trigger(self, created):
        lc = UnitLifecycle(created, "auth")
        with pytest.raises(InvalidTransition):
            lc.fire("verify")
        assert created.locate("auth") == Position.PENDING

    def test_logs_transition(self, created, caplog):
        with caplog.at_level(logging.INFO):
            UnitLifecycle(created, "auth").fire("start")
        assert "[LIFECYCLE] auth: pending -> active (start)" in caplog.text

    def test_available_triggers(self, created):
        created.move("auth", Position.PENDING, Position.TESTING)
        assert set(UnitLifecycle(created, "auth").get_available_triggers()) == {"verify", "reject", "requeue"}


class TestMoveUnit:
    """Tests for move_unit()."""

    def test_self_move_is_noop(self, store):
        store.create(make_unit("auth"))
        assert move_unit(store, "auth", Position.PENDING) == Position.PENDING

    def test_legal_move(self, store):
        store.create(make_unit("auth"))
        assert move_unit(store, "auth", Position.ACTIVE) == Position.ACTIVE

    def test_illegal_move_refused(self, store):
        store.create(make_unit("auth"))
        with pytest.raises(InvalidTransition) as exc:
            move_unit(store, "auth", Position.COMPLETED)
        assert "--force" in exc.value.next_step

    def test_forced_move(self, store):
        store.create(make_unit("auth"))
        assert move_unit(store, "auth", Position.COMPLETED, force=True) == Position.COMPLETED
        assert store.locate("auth") == Position.COMPLETED

    def test_missing_unit(self, store):
        with pytest.raises(UnitNotFound):
            move_unit(store, "nope", Position.ACTIVE)
