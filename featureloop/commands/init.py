"""featureloop init"""

from pathlib import Path

from featureloop.lib.config import load_config, write_default_config
from featureloop.state.store import UnitStore


def cmd_init(args, project_dir: Path) -> int:
    config_path = write_default_config(project_dir)
    config = load_config(project_dir)
    UnitStore(config.state_root).ensure_dirs()
    print(f"Config: {config_path}")
    print(f"State:  {config.state_root}")
    print("\nCreate your first unit with: featureloop new <unit> -d 'description' --from-json tasks.json")
    return 0
