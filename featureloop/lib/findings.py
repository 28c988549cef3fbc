"""
Durable findings extracted from a unit's progress log.

Two kinds of content survive a unit:
- the "## Codebase Patterns" section at the top of progress.txt
- every "**Learnings for future iterations:**" block in the log entries

They are appended to the project-wide findings file and to the unit's own.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

logger = logging.getLogger(__name__)

_PATTERNS_SECTION = re.compile(r"## Codebase Patterns\s*\n(.*?)(?=\n---|\n## (?!Codebase)|\Z)", re.DOTALL)
_LEARNINGS_BLOCK = re.compile(
    r"\*\*Learnings for future iterations:\*\*\s*\n(.*?)(?=\n---|\n## |\n\*\*|\Z)", re.DOTALL
)

GLOBAL_HEADER = "# Project Findings\n\nPatterns and learnings collected from verified units.\n\n"
UNIT_HEADER = "# {name} Findings\n\n"


@dataclass
class Findings:
    patterns: str = ""
    learnings: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.patterns and not self.learnings


def extract_findings(progress: str) -> Findings:
    findings = Findings()

    m = _PATTERNS_SECTION.search(progress)
    if m:
        findings.patterns = m.group(1).strip()

    for block in _LEARNINGS_BLOCK.finditer(progress):
        text = block.group(1).strip()
        if text:
            findings.learnings.append(text)

    return findings


def extract_patterns(progress: str) -> list[str]:
    """The '- ' bullet lines of the Codebase Patterns section."""
    patterns = extract_findings(progress).patterns
    return [line.strip()[2:] for line in patterns.splitlines() if line.strip().startswith("- ")]


def format_findings(unit_name: str, findings: Findings, today: date | None = None) -> str:
    today = today or date.today()
    lines = [f"## [{today.isoformat()}] {unit_name}", ""]
    if findings.patterns:
        lines += ["### Patterns", "", findings.patterns, ""]
    if findings.learnings:
        lines += ["### Learnings", "", "\n\n".join(findings.learnings), ""]
    lines += ["---", ""]
    return "\n".join(lines)


def append_findings(path: Path, entry: str, header: str) -> None:
    """Append an entry, writing the header first if the file is new."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.write_text(header)
    with open(path, "a") as f:
        f.write("\n" + entry)


def save_findings(unit_name: str, progress: str, global_path: Path, unit_path: Path) -> bool:
    """Extract findings and append them to both files.

    Returns:
        False if the progress log had nothing worth keeping.
    """
    findings = extract_findings(progress)
    if findings.is_empty():
        logger.info(f"No findings to save for {unit_name}")
        return False

    entry = format_findings(unit_name, findings)
    append_findings(global_path, entry, GLOBAL_HEADER)
    append_findings(unit_path, entry, UNIT_HEADER.format(name=unit_name))
    logger.info(f"Saved findings for {unit_name} to {global_path}")
    return True
