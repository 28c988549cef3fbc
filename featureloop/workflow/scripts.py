"""
Environment scripts for the verification pass.

Each script is a bash file from featureloop.yaml, run from the project root
with the unit id as its only argument. An unconfigured or missing script is
skipped and counts as success. The start script is expected to launch the
app in the background and return.
"""

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class ScriptResult:
    ok: bool
    output: str = ""
    exit_code: int = 0
    skipped: bool = False


def run_script(script: Optional[str], unit_id: str, project_dir: Path, name: str = "script") -> ScriptResult:
    if not script:
        return ScriptResult(ok=True, skipped=True)

    path = Path(script)
    if not path.is_absolute():
        path = project_dir / path
    if not path.exists():
        logger.warning(f"[TESTING] {name} script not found: {path}, skipping")
        return ScriptResult(ok=True, skipped=True)

    logger.info(f"[TESTING] Running {name} script: {path}")
    try:
        proc = subprocess.run(
            ["bash", str(path), unit_id],
            cwd=str(project_dir),
            capture_output=True,
            text=True,
        )
    except OSError as e:
        return ScriptResult(ok=False, output=str(e), exit_code=-1)

    output = proc.stdout + proc.stderr
    if proc.returncode != 0:
        logger.warning(f"[TESTING] {name} script exited with {proc.returncode}")
    return ScriptResult(ok=proc.returncode == 0, output=output, exit_code=proc.returncode)


def wait_for_health_check(
    script: Optional[str],
    unit_id: str,
    project_dir: Path,
    timeout: int,
    interval: float = 2,
    sleep: Callable[[float], None] = time.sleep,
) -> ScriptResult:
    """Poll the health-check script until it passes or timeout seconds pass.

    Returns the last result, so a failure carries the last output.
    """
    if not script:
        return ScriptResult(ok=True, skipped=True)

    elapsed = 0.0
    result = ScriptResult(ok=False)
    while True:
        result = run_script(script, unit_id, project_dir, name="health-check")
        if result.ok:
            logger.info(f"[TESTING] Health check passed after {elapsed:.0f}s")
            return result
        if elapsed >= timeout:
            break
        print(f"  Waiting for health check... ({elapsed:.0f}s/{timeout}s)")
        sleep(interval)
        elapsed += interval

    logger.warning(f"[TESTING] Health check failed after {timeout}s")
    return result
