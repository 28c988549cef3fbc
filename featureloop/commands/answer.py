"""featureloop answer"""

from featureloop.lib.config import LoopConfig
from featureloop.state.store import UnitStore


def cmd_answer(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)
    task = store.unblock_task(args.unit, args.task, args.answer or [])
    print(f"{task.id} is pending again with {len(task.answers)} answer(s).")
    print(f"\nNext:\n  featureloop start {args.unit}")
    return 0
