"""featureloop move / featureloop complete"""

from featureloop.lib.config import LoopConfig
from featureloop.state.models import Position
from featureloop.state.store import UnitStore
from featureloop.workflow.lifecycle import move_unit
from featureloop.workflow.testing import complete_unit


def cmd_move(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)
    position = move_unit(store, args.unit, Position(args.position), force=args.force)
    print(f"{args.unit} is now in {position.value}")
    return 0


def cmd_complete(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)
    complete_unit(store, args.unit)
    print(f"{args.unit} marked completed")
    return 0
