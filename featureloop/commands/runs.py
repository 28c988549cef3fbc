"""featureloop runs"""

from featureloop.lib.config import LoopConfig
from featureloop.state.runs import RunRegistry


def cmd_runs(args, config: LoopConfig) -> int:
    registry = RunRegistry(config.state_root)
    stale = registry.reconcile()
    runs = registry.all()

    if not runs:
        print("No recorded runs.")
        return 0

    print(f"{'UNIT':<28} {'PID':<8} {'STATUS':<12} {'AGENT':<12} STARTED")
    for unit_id, entry in sorted(runs.items()):
        print(f"{unit_id:<28} {entry.pid:<8} {entry.status:<12} {entry.agent or '-':<12} {entry.started_at}")

    if stale:
        print(f"\n{len(stale)} run(s) marked stale. Check each unit, then resume:")
        for unit_id in stale:
            print(f"  featureloop status {unit_id}")
    return 0
