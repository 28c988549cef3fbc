"""
Registry of background/foreground runs, kept in <root>/runs.json.

One entry per unit. An entry whose process has died while still marked
running is marked "stale" by reconcile() and left for a human to look at;
entries are never deleted automatically.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional

from featureloop.lib.constants import RUNS_FILE
from featureloop.lib.errors import InvalidStructure, RunConflict
from featureloop.lib.validate import ValidationError, validate, validate_before_write
from featureloop.state.models import now_iso
from featureloop.state.store import atomic_write_text

logger = logging.getLogger(__name__)

RUN_STATUSES = ("running", "finished", "interrupted", "stale")


@dataclass
class RunEntry:
    pid: int
    started_at: str
    status: str = "running"
    agent: Optional[str] = None


def pid_alive(pid: int) -> bool:
    """True if a process with this pid exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


class RunRegistry:
    def __init__(self, root: Path):
        self.path = Path(root) / RUNS_FILE

    def _load(self) -> dict[str, RunEntry]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
            validate(data, "runs")
        except json.JSONDecodeError as e:
            raise InvalidStructure(self.path, f"invalid JSON: {e}") from None
        except ValidationError as e:
            raise InvalidStructure(self.path, str(e)) from None
        return {unit_id: RunEntry(**entry) for unit_id, entry in data["runs"].items()}

    def _save(self, runs: dict[str, RunEntry]) -> None:
        data = {"runs": {unit_id: asdict(entry) for unit_id, entry in runs.items()}}
        try:
            validate_before_write(data, "runs", self.path)
        except ValidationError as e:
            raise InvalidStructure(self.path, str(e)) from None
        atomic_write_text(self.path, json.dumps(data, indent=2) + "\n")

    def register(self, unit_id: str, pid: int, agent: str | None = None) -> RunEntry:
        """Record a new run, replacing any finished or stale entry.

        Raises:
            RunConflict: If a live process is already running this unit.
        """
        runs = self._load()
        current = runs.get(unit_id)
        if current and current.status == "running" and current.pid != pid and pid_alive(current.pid):
            raise RunConflict(unit_id, current.pid)

        entry = RunEntry(pid=pid, started_at=now_iso(), status="running", agent=agent)
        runs[unit_id] = entry
        self._save(runs)
        return entry

    def update_status(self, unit_id: str, status: str) -> None:
        if status not in RUN_STATUSES:
            raise ValueError(f"Unknown run status: {status}")
        runs = self._load()
        if unit_id not in runs:
            logger.debug(f"No run entry for {unit_id}, nothing to update")
            return
        runs[unit_id].status = status
        self._save(runs)

    def remove(self, unit_id: str) -> bool:
        runs = self._load()
        if runs.pop(unit_id, None) is None:
            return False
        self._save(runs)
        return True

    def get(self, unit_id: str) -> Optional[RunEntry]:
        return self._load().get(unit_id)

    def all(self) -> dict[str, RunEntry]:
        return self._load()

    def reconcile(self, is_alive: Callable[[int], bool] = pid_alive) -> list[str]:
        """Mark running entries whose process is gone as stale.

        Returns:
            Unit ids newly marked stale.
        """
        runs = self._load()
        stale = []
        for unit_id, entry in runs.items():
            if entry.status == "running" and not is_alive(entry.pid):
                entry.status = "stale"
                stale.append(unit_id)
                logger.warning(f"Run for {unit_id} (pid {entry.pid}) is no longer alive; marked stale")
        if stale:
            self._save(runs)
        return stale
