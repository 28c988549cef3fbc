"""featureloop list"""

from featureloop.lib.config import LoopConfig
from featureloop.state.models import Position
from featureloop.state.store import UnitStore


def cmd_list(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)
    position = Position(args.position) if args.position else None
    units = store.list_units(position)

    if not units:
        print("No units.")
        return 0

    print(f"{'UNIT':<28} {'POSITION':<10} {'TASKS':<8} NOTE")
    for unit in units:
        done, total = unit.progress()
        note = ""
        if unit.blocked_tasks():
            note = "blocked"
        elif unit.last_run:
            note = unit.last_run.reason.value
        print(f"{unit.name:<28} {unit.position.value:<10} {done}/{total:<6} {note}")
    return 0
