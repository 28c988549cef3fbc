"""
Shared constants for featureloop.

Marker strings are the contract with the agent prompts in prompts/.
Changing one here means changing the matching template.
"""

import re

STATE_DIR_DEFAULT = ".featureloop"
CONFIG_FILENAME = "featureloop.yaml"

UNIT_FILE = "unit.json"
SPEC_FILE = "spec.md"
PROGRESS_FILE = "progress.txt"
VERIFICATION_FILE = "verification.md"
FINDINGS_FILE = "findings.md"
TEST_RESULTS_DIR = "test-results"
LOGS_DIR = "logs"
REPORT_FILE = "report.md"
RUNS_FILE = "runs.json"

# Unit ids become directory names
UNIT_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9._-]*$")
UNIT_ID_MAX_LENGTH = 64

# A task that is still active after this many attempts gets blocked
MAX_TASK_ATTEMPTS = 3

PROGRESS_TAIL_LINES = 20
SPEC_EXCERPT_CHARS = 3000

# Testing loop defaults
HEALTH_CHECK_INTERVAL = 2
HEALTH_CHECK_TIMEOUT_DEFAULT = 30
MAX_HEALTH_FIX_ATTEMPTS_DEFAULT = 3

FIX_TASK_PREFIX = "FIX-"
FIX_TASK_PRIORITY = 1
FIX_STANDING_CRITERIA = [
    "Ensure all items in verification.md pass",
    "All project quality checks must pass",
]

# Agent output markers
TASK_COMPLETE_MARKER = "<promise>TASK_COMPLETE</promise>"
UNIT_COMPLETE_MARKER = "<promise>COMPLETE</promise>"
VERIFIED_MARKER = "<test-result>VERIFIED</test-result>"
FAILED_MARKER = "<test-result>FAILED</test-result>"

# Exit codes (shared with the CLI)
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_BLOCKED = 8
EXIT_INTERRUPTED = 130


def valid_unit_id(unit_id: str) -> bool:
    """Check a unit id can be used as a directory name."""
    return bool(UNIT_ID_PATTERN.match(unit_id)) and len(unit_id) <= UNIT_ID_MAX_LENGTH
