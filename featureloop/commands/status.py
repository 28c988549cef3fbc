"""featureloop status"""

from featureloop.lib.config import LoopConfig
from featureloop.state.dependencies import can_start, dependency_graph, dependents_of
from featureloop.state.models import Position, TaskStatus
from featureloop.state.store import UnitStore
from featureloop.commands.output import print_next_steps

STATUS_ICONS = {
    TaskStatus.PENDING: " ",
    TaskStatus.ACTIVE: ">",
    TaskStatus.COMPLETED: "x",
    TaskStatus.BLOCKED: "!",
}


def cmd_status(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)
    if args.unit:
        return _unit_status(store, args.unit)
    return _overview(store)


def _overview(store: UnitStore) -> int:
    graph = dependency_graph(store)
    for position in Position:
        units = store.list_units(position)
        print(f"{position.value.upper()} ({len(units)})")
        for unit in units:
            done, total = unit.progress()
            deps = f"  <- {', '.join(graph[unit.name])}" if graph.get(unit.name) else ""
            print(f"  {unit.name} [{done}/{total}]{deps}")
    return 0


def _unit_status(store: UnitStore, unit_id: str) -> int:
    unit = store.read(unit_id)
    done, total = unit.progress()

    print(f"{unit.name} ({unit.position.value})")
    print(f"  {unit.description}")
    print(f"  Tasks: {done}/{total} completed")
    if unit.dependencies:
        check = can_start(store, unit_id)
        state = "satisfied" if check.ok else f"waiting on {', '.join(check.unmet)}"
        print(f"  Depends on: {', '.join(unit.dependencies)} ({state})")
    dependents = dependents_of(store, unit_id)
    if dependents:
        print(f"  Needed by: {', '.join(dependents)}")
    m = unit.metrics
    print(f"  Iterations: {m.iterations}  Tokens: {m.input_tokens} in / {m.output_tokens} out")
    if unit.last_run:
        lr = unit.last_run
        print(f"  Last run: {lr.timestamp} {lr.reason.value} - {lr.summary}")

    print()
    for task in sorted(unit.tasks, key=lambda t: t.priority):
        retries = f" (attempts: {task.retries})" if task.retries else ""
        print(f"  [{STATUS_ICONS[task.status]}] {task.id} P{task.priority} {task.title}{retries}")
        if task.status == TaskStatus.BLOCKED:
            for q in task.questions:
                print(f"        ? {q}")

    steps = []
    for task in unit.blocked_tasks():
        steps.append(f"featureloop answer {unit_id} {task.id} " + " ".join(["-a '...'"] * len(task.questions)))
    if unit.position in (Position.PENDING, Position.ACTIVE) and not steps:
        steps.append(f"featureloop start {unit_id}")
    elif unit.position == Position.TESTING:
        steps.append(f"featureloop test {unit_id}")
    print_next_steps(steps)
    return 0
