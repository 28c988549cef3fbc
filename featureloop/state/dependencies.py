"""
Dependency gate for starting units.

A prerequisite is satisfied when it is completed, or when it is still in
pending/active but every one of its tasks is done (its verification pass just
hasn't happened yet). A prerequisite that doesn't exist is unmet.

Cycles are not detected: two units that depend on each other simply never
become startable.
"""

from dataclasses import dataclass, field

from featureloop.lib.errors import InvalidStructure, UnitNotFound
from featureloop.state.models import Position
from featureloop.state.store import UnitStore


@dataclass
class DependencyCheck:
    ok: bool
    unmet: list[str] = field(default_factory=list)


def dependency_satisfied(store: UnitStore, dep_id: str) -> bool:
    position = store.locate(dep_id)
    if position is None:
        return False
    if position == Position.COMPLETED:
        return True
    if position in (Position.PENDING, Position.ACTIVE):
        try:
            return store.read(dep_id).all_tasks_completed()
        except InvalidStructure:
            return False
    return False


def can_start(store: UnitStore, unit_id: str) -> DependencyCheck:
    """Check whether every prerequisite of unit_id is satisfied.

    Raises:
        UnitNotFound: If unit_id itself doesn't exist.
    """
    unit = store.read(unit_id)
    unmet = [dep for dep in unit.dependencies if not dependency_satisfied(store, dep)]
    return DependencyCheck(ok=not unmet, unmet=unmet)


def dependency_graph(store: UnitStore) -> dict[str, list[str]]:
    """unit id -> declared dependencies, for every readable unit."""
    return {unit.name: list(unit.dependencies) for unit in store.list_units()}


def dependents_of(store: UnitStore, unit_id: str) -> list[str]:
    """Units that list unit_id as a dependency."""
    if not store.exists(unit_id):
        raise UnitNotFound(unit_id)
    return sorted(name for name, deps in dependency_graph(store).items() if unit_id in deps)
