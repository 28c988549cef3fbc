"""Unit lifecycle state machine using the transitions library.

A unit's state is the directory it lives in (pending/active/testing/
completed). The FSM decides which moves are legal; after every transition
the store performs the directory move, so disk and FSM never disagree.

Usage:
    from featureloop.workflow.lifecycle import UnitLifecycle

    lc = UnitLifecycle(store, "auth-login")
    lc.start()          # pending -> active
    lc.finish_tasks()   # active -> testing
    lc.verify()         # testing -> completed
"""

import logging

from transitions import Machine, MachineError

from featureloop.lib.errors import InvalidTransition, UnitNotFound
from featureloop.state.models import Position
from featureloop.state.store import UnitStore

logger = logging.getLogger(__name__)


STATES = [p.value for p in Position]

TRANSITIONS = [
    # Running tasks
    {"trigger": "start", "source": "pending", "dest": "active"},
    {"trigger": "finish_tasks", "source": "active", "dest": "testing"},
    {"trigger": "finish_tasks", "source": "pending", "dest": "testing"},  # nothing left to do

    # Verification outcomes
    {"trigger": "verify", "source": "testing", "dest": "completed"},
    {"trigger": "reject", "source": "testing", "dest": "active"},

    # Manual corrections
    {"trigger": "reopen", "source": "completed", "dest": "active"},
    {"trigger": "requeue", "source": "active", "dest": "pending"},
    {"trigger": "requeue", "source": "testing", "dest": "pending"},
]


# move_unit() works in destinations; each (source, dest) pair has one trigger
TRIGGER_FOR: dict[tuple[str, str], str] = {(t["source"], t["dest"]): t["trigger"] for t in TRANSITIONS}


class UnitLifecycle:
    """Lifecycle FSM for one unit, persisted through the store."""

    def __init__(self, store: UnitStore, unit_id: str):
        self.store = store
        self.unit_id = unit_id

        position = store.locate(unit_id)
        if position is None:
            raise UnitNotFound(unit_id)

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=position.value,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    @property
    def position(self) -> Position:
        return Position(self.state)

    def on_state_change(self, event) -> None:
        """Move the unit directory to match the new state."""
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        self.store.move(self.unit_id, Position(from_state), Position(to_state))
        logger.info(f"[LIFECYCLE] {self.unit_id}: {from_state} -> {to_state} ({trigger})")

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)

    def fire(self, trigger: str) -> Position:
        """Fire a trigger by name, translating FSM errors."""
        if not self.can(trigger):
            dest = next((t["dest"] for t in TRANSITIONS if t["trigger"] == trigger), "?")
            raise InvalidTransition(self.unit_id, self.state, dest)
        try:
            self.trigger(trigger)
        except MachineError as e:
            raise InvalidTransition(self.unit_id, self.state, "?") from e
        return self.position


def move_unit(store: UnitStore, unit_id: str, to: Position, force: bool = False) -> Position:
    """Move a unit to a position.

    Moving to the current position is a no-op. Without force only moves the
    lifecycle allows are accepted; force moves the directory directly, for
    manual repair.

    Raises:
        UnitNotFound: If the unit doesn't exist.
        InvalidTransition: If the move isn't allowed and force is False.
    """
    to = Position(to)
    current = store.locate(unit_id)
    if current is None:
        raise UnitNotFound(unit_id)
    if current == to:
        return current

    trigger = TRIGGER_FOR.get((current.value, to.value))
    if trigger is not None:
        return UnitLifecycle(store, unit_id).fire(trigger)

    if not force:
        raise InvalidTransition(unit_id, current.value, to.value)

    store.move(unit_id, current, to)
    logger.info(f"[LIFECYCLE] {unit_id}: {current.value} -> {to.value} (forced)")
    return to
