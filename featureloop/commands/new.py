"""featureloop new"""

import json
import logging
from pathlib import Path

from featureloop.lib.config import LoopConfig
from featureloop.lib.errors import InvalidStructure
from featureloop.state.models import Task, Unit
from featureloop.state.store import UnitStore

logger = logging.getLogger(__name__)


def load_tasks_file(path: Path) -> tuple[list[Task], dict]:
    """Read tasks from a JSON file holding either a list of tasks or a
    unit-shaped object with a "stories" list."""
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidStructure(path, str(e)) from None

    extra = {}
    if isinstance(data, dict):
        extra = data
        data = data.get("stories", [])
    if not isinstance(data, list):
        raise InvalidStructure(path, "expected a list of tasks or an object with 'stories'")

    try:
        tasks = [Task.from_dict(t) for t in data]
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidStructure(path, f"bad task entry: {e}") from None
    return tasks, extra


def cmd_new(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)

    tasks: list[Task] = []
    extra: dict = {}
    if args.from_json:
        tasks, extra = load_tasks_file(Path(args.from_json))
    for i, title in enumerate(args.task or [], len(tasks) + 1):
        tasks.append(Task(id=f"US-{i:03d}", title=title, priority=i))

    description = args.description or extra.get("description")
    if not description:
        print("ERROR: a description is required (-d)")
        return 1

    spec_text = Path(args.spec).read_text() if args.spec else None
    unit = Unit(
        name=args.unit,
        description=description,
        tasks=tasks,
        dependencies=list(args.depends_on or extra.get("dependencies", [])),
    )
    store.create(unit, spec_text=spec_text)

    print(f"Created {unit.name} in pending with {len(tasks)} task(s)")
    if not tasks:
        print("WARNING: unit has no tasks; it will go straight to verification when started")
    print(f"\nNext:\n  featureloop start {unit.name}")
    return 0
