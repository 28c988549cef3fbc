"""
Classify agent output into completion signals.

Task signals come from an ordered chain of strategies; the first one that
returns something other than NONE wins:

  1. MarkerStrategy     exact <promise>...</promise> markers
  2. HeuristicStrategy  phrase patterns ("US-001 completed", "cannot proceed")
  3. JsonStatusStrategy a JSON fragment with "status": "completed"|"blocked"

Within every strategy a blocked signal beats a completed one. Callers can
pass their own strategy list to SignalClassifier.

Verification and health-check fix runs have their own marker vocabularies,
handled by detect_verification() and detect_healthcheck_fix().
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol

from featureloop.lib.constants import UNIT_COMPLETE_MARKER

logger = logging.getLogger(__name__)


class Signal(str, Enum):
    COMPLETED = "completed"
    BLOCKED = "blocked"
    NONE = "none"


@dataclass
class Detection:
    signal: Signal
    questions: list[str] = field(default_factory=list)
    source: Optional[str] = None   # name of the strategy that matched

    @property
    def found(self) -> bool:
        return self.signal != Signal.NONE


NO_SIGNAL = Detection(Signal.NONE)

_QUESTIONS_BLOCK = re.compile(r"<questions>(.*?)</questions>", re.DOTALL | re.IGNORECASE)
_ISSUES_BLOCK = re.compile(r"<issues>(.*?)</issues>", re.DOTALL | re.IGNORECASE)
_BULLET = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+(.+?)\s*$")


def _bullets(block: str) -> list[str]:
    items = []
    for line in block.splitlines():
        m = _BULLET.match(line)
        if m:
            items.append(m.group(1))
    return items


def extract_questions(output: str) -> list[str]:
    """Bullet items inside <questions>...</questions>, or [] if absent."""
    m = _QUESTIONS_BLOCK.search(output)
    return _bullets(m.group(1)) if m else []


def extract_issues(output: str) -> list[str]:
    """Bullet items inside <issues>...</issues>.

    Missing or malformed blocks yield an empty list.
    """
    m = _ISSUES_BLOCK.search(output)
    return _bullets(m.group(1)) if m else []


class SignalStrategy(Protocol):
    name: str

    def detect(self, output: str, task_id: str) -> Detection:
        ...


class MarkerStrategy:
    """<promise>TASK_COMPLETE</promise> / <promise>BLOCKED</promise>.

    Either marker may carry a task id suffix (<promise>BLOCKED:US-002</promise>);
    a suffix naming a different task is ignored.
    """
    name = "marker"

    _MARKER = re.compile(r"<promise>(TASK_COMPLETE|BLOCKED)(?::([^<\s]+))?</promise>")

    def detect(self, output: str, task_id: str) -> Detection:
        kinds = set()
        for m in self._MARKER.finditer(output):
            target = m.group(2)
            if target and target != task_id:
                logger.debug(f"Ignoring marker for other task {target}")
                continue
            kinds.add(m.group(1))

        if "BLOCKED" in kinds:
            return Detection(Signal.BLOCKED, extract_questions(output), self.name)
        if "TASK_COMPLETE" in kinds:
            return Detection(Signal.COMPLETED, source=self.name)
        return NO_SIGNAL


class HeuristicStrategy:
    """Phrase patterns. Completion needs at least `min_completion_hits` patterns."""
    name = "heuristic"

    def __init__(self, min_completion_hits: int = 2):
        self.min_completion_hits = min_completion_hits

    @staticmethod
    def completion_patterns(task_id: str) -> list[re.Pattern]:
        tid = re.escape(task_id)
        return [
            re.compile(rf"{tid}\s+completed", re.IGNORECASE),
            re.compile(rf"marked\s+{tid}\s+as\s+completed", re.IGNORECASE),
            re.compile(rf"{tid}.*status.*completed", re.IGNORECASE),
            re.compile(r"All checks pass", re.IGNORECASE),
            re.compile(r"Committed changes", re.IGNORECASE),
        ]

    @staticmethod
    def blocked_patterns(task_id: str) -> list[re.Pattern]:
        tid = re.escape(task_id)
        return [
            re.compile(rf"{tid}.*blocked", re.IGNORECASE),
            re.compile(r"cannot\s+(complete|proceed)", re.IGNORECASE),
            re.compile(r"unclear requirements", re.IGNORECASE),
            re.compile(r"missing.*dependencies", re.IGNORECASE),
        ]

    def detect(self, output: str, task_id: str) -> Detection:
        if any(p.search(output) for p in self.blocked_patterns(task_id)):
            return Detection(Signal.BLOCKED, extract_questions(output), self.name)

        hits = sum(1 for p in self.completion_patterns(task_id) if p.search(output))
        if hits >= self.min_completion_hits:
            return Detection(Signal.COMPLETED, source=self.name)
        return NO_SIGNAL


class JsonStatusStrategy:
    """First flat JSON object in the output with a completed/blocked status."""
    name = "json"

    _FRAGMENT = re.compile(r'\{[^{}]*"status"\s*:\s*"(completed|blocked)"[^{}]*\}')

    def detect(self, output: str, task_id: str) -> Detection:
        for m in self._FRAGMENT.finditer(output):
            try:
                data = json.loads(m.group(0))
            except json.JSONDecodeError:
                continue
            other = data.get("id") or data.get("taskId")
            if other and other != task_id:
                continue
            if data.get("status") == "blocked":
                questions = data.get("questions")
                if not isinstance(questions, list):
                    questions = extract_questions(output)
                return Detection(Signal.BLOCKED, [str(q) for q in questions], self.name)
            return Detection(Signal.COMPLETED, source=self.name)
        return NO_SIGNAL


def default_strategies() -> list[SignalStrategy]:
    return [MarkerStrategy(), HeuristicStrategy(), JsonStatusStrategy()]


class SignalClassifier:
    """Run strategies in order; the first non-NONE detection wins."""

    def __init__(self, strategies: list[SignalStrategy] | None = None):
        self.strategies = strategies if strategies is not None else default_strategies()

    def classify(self, output: str, task_id: str) -> Detection:
        for strategy in self.strategies:
            detection = strategy.detect(output, task_id)
            if detection.found:
                logger.debug(f"{task_id}: {detection.signal.value} via {strategy.name}")
                return detection
        return NO_SIGNAL


def has_unit_complete_marker(output: str) -> bool:
    """The agent claims every task in the unit is done."""
    return UNIT_COMPLETE_MARKER in output


class VerificationSignal(str, Enum):
    VERIFIED = "verified"
    FAILED = "failed"
    UNKNOWN = "unknown"


_TEST_RESULT = re.compile(r"<test-result>\s*(VERIFIED|FAILED)\s*</test-result>", re.IGNORECASE)


def detect_verification(output: str) -> VerificationSignal:
    """Classify QA agent output. FAILED wins if both markers appear."""
    results = {m.group(1).upper() for m in _TEST_RESULT.finditer(output)}
    if "FAILED" in results:
        return VerificationSignal.FAILED
    if "VERIFIED" in results:
        return VerificationSignal.VERIFIED
    return VerificationSignal.UNKNOWN


class HealthFixSignal(str, Enum):
    FIXED = "fixed"
    NOT_FIXABLE = "not_fixable"
    NONE = "none"


_HEALTHCHECK_RESULT = re.compile(r"<healthcheck-result>\s*(FIXED|NOT_FIXABLE)\s*</healthcheck-result>")


def detect_healthcheck_fix(output: str) -> HealthFixSignal:
    m = _HEALTHCHECK_RESULT.search(output)
    if not m:
        return HealthFixSignal.NONE
    return HealthFixSignal.FIXED if m.group(1) == "FIXED" else HealthFixSignal.NOT_FIXABLE
