"""
QA agent reports.

The QA agent answers with a checklist of `- [x]` / `- [ ]` items, optional
`**Reason:**` lines under failures, a <test-result> marker and an <issues>
block. The parsed report is saved as test-results/report.md; the next
verification pass reads its failures back to run a focused retest.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from featureloop.lib.signals import VerificationSignal, detect_verification, extract_issues

logger = logging.getLogger(__name__)

_ITEM = re.compile(r"^\s*[-*]\s+\[([ xX])\]\s+(.+?)\s*$")
_REASON = re.compile(r"^\s+[-*]\s+\*\*Reason:\*\*\s*(.+?)\s*$")

OUTPUT_HEADING = "## Full Agent Output"


@dataclass
class ReportItem:
    text: str
    passed: bool
    reason: Optional[str] = None

    def describe(self) -> str:
        return f"{self.text} (Reason: {self.reason})" if self.reason else self.text


@dataclass
class QAReport:
    result: VerificationSignal
    items: list[ReportItem] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)
    output: str = ""

    @property
    def failed_items(self) -> list[ReportItem]:
        return [i for i in self.items if not i.passed]

    @property
    def passed_items(self) -> list[ReportItem]:
        return [i for i in self.items if i.passed]

    def failure_descriptions(self) -> list[str]:
        """Failed items plus reported issues, deduplicated, in order."""
        seen = []
        for text in [i.describe() for i in self.failed_items] + self.issues:
            if text not in seen:
                seen.append(text)
        return seen


def parse_items(text: str) -> list[ReportItem]:
    items: list[ReportItem] = []
    for line in text.splitlines():
        m = _ITEM.match(line)
        if m:
            items.append(ReportItem(text=m.group(2), passed=m.group(1) != " "))
            continue
        r = _REASON.match(line)
        if r and items and not items[-1].passed and items[-1].reason is None:
            items[-1].reason = r.group(1)
    return items


def parse_qa_report(output: str) -> QAReport:
    return QAReport(
        result=detect_verification(output),
        items=parse_items(output),
        issues=extract_issues(output),
        output=output,
    )


def format_report(unit_id: str, report: QAReport, focused: bool = False) -> str:
    passed = len(report.passed_items)
    lines = [
        f"# Verification Report: {unit_id}",
        "",
        f"- Date: {datetime.now().isoformat(timespec='seconds')}",
        f"- Result: {report.result.value.upper()}",
        f"- Mode: {'focused retest' if focused else 'full'}",
        f"- Passed: {passed}/{len(report.items)}",
        "",
    ]
    if report.failed_items:
        lines += ["## Failed Items", ""]
        for item in report.failed_items:
            lines.append(f"- [ ] {item.text}")
            if item.reason:
                lines.append(f"  - **Reason:** {item.reason}")
        lines.append("")
    if report.passed_items:
        lines += ["## Passed Items", ""]
        lines += [f"- [x] {item.text}" for item in report.passed_items]
        lines.append("")
    if report.issues:
        lines += ["## Issues", "", "<issues>"]
        lines += [f"- {issue}" for issue in report.issues]
        lines += ["</issues>", ""]
    lines += [OUTPUT_HEADING, "", report.output.rstrip(), ""]
    return "\n".join(lines)


def save_report(path: Path, unit_id: str, report: QAReport, focused: bool = False) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(format_report(unit_id, report, focused=focused))
    logger.info(f"[TESTING] Saved report to {path}")
    return path


def load_previous_failures(path: Path) -> list[str]:
    """Failures recorded in a saved report, or [] when there is none.

    Only the summary part is read; the raw agent output below it is ignored.
    """
    if not path.exists():
        return []
    text = path.read_text()
    summary = text.split(OUTPUT_HEADING, 1)[0]
    report = QAReport(
        result=VerificationSignal.UNKNOWN,
        items=parse_items(summary),
        issues=extract_issues(summary),
    )
    return report.failure_descriptions()
