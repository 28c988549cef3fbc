"""
Data models for units and tasks.

A Unit's lifecycle position is NOT stored in unit.json: it is the directory
the unit lives in. `Unit.position` is filled in by the store on read and is
never serialized.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class TaskStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class Position(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    TESTING = "testing"
    COMPLETED = "completed"


class RunReason(str, Enum):
    TASK_COMPLETED = "task_completed"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    NO_SIGNAL = "no_signal"
    AGENT_ERROR = "agent_error"
    MAX_ITERATIONS = "max_iterations"
    USER_INTERRUPTED = "user_interrupted"
    DEPENDENCY_UNMET = "dependency_unmet"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"
    VERIFICATION_UNCLEAR = "verification_unclear"


def now_iso() -> str:
    return datetime.now().isoformat(timespec="seconds")


@dataclass
class Task:
    id: str
    title: str
    acceptance_criteria: list[str] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 1
    questions: list[str] = field(default_factory=list)
    answers: Optional[list[str]] = None
    retries: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        return cls(
            id=data["id"],
            title=data["title"],
            acceptance_criteria=list(data.get("acceptanceCriteria", [])),
            status=TaskStatus(data.get("status", "pending")),
            priority=data.get("priority", 1),
            questions=list(data.get("questions", [])),
            answers=list(data["answers"]) if data.get("answers") is not None else None,
            retries=data.get("retries"),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "status": self.status.value,
            "priority": self.priority,
            "questions": list(self.questions),
        }
        if self.answers is not None:
            data["answers"] = list(self.answers)
        if self.retries is not None:
            data["retries"] = self.retries
        return data


@dataclass
class RunRecord:
    """Why the last run of a unit stopped. Written every iteration."""
    reason: RunReason
    summary: str = ""
    task_id: Optional[str] = None
    timestamp: str = field(default_factory=now_iso)

    @classmethod
    def from_dict(cls, data: dict) -> "RunRecord":
        return cls(
            reason=RunReason(data["reason"]),
            summary=data.get("summary", ""),
            task_id=data.get("taskId"),
            timestamp=data["timestamp"],
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "taskId": self.task_id,
            "reason": self.reason.value,
            "summary": self.summary,
        }


@dataclass
class Metrics:
    iterations: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def add(self, input_tokens: int = 0, output_tokens: int = 0, iterations: int = 1) -> None:
        self.iterations += iterations
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.total_tokens = self.input_tokens + self.output_tokens

    @classmethod
    def from_dict(cls, data: dict) -> "Metrics":
        return cls(
            iterations=data.get("iterations", 0),
            input_tokens=data.get("inputTokens", 0),
            output_tokens=data.get("outputTokens", 0),
            total_tokens=data.get("totalTokens", 0),
        )

    def to_dict(self) -> dict:
        return {
            "iterations": self.iterations,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class Unit:
    """A feature being built: a description, a spec and an ordered task list."""
    name: str
    description: str
    tasks: list[Task] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    dependencies: list[str] = field(default_factory=list)
    last_run: Optional[RunRecord] = None
    metrics: Metrics = field(default_factory=Metrics)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    position: Optional[Position] = None      # derived from location, never saved

    @classmethod
    def from_dict(cls, data: dict, position: Position | None = None) -> "Unit":
        return cls(
            name=data["name"],
            description=data["description"],
            tasks=[Task.from_dict(t) for t in data["stories"]],
            created_at=data.get("createdAt", ""),
            dependencies=list(data.get("dependencies", [])),
            last_run=RunRecord.from_dict(data["lastRun"]) if data.get("lastRun") else None,
            metrics=Metrics.from_dict(data.get("metrics", {})),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
            position=position,
        )

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "description": self.description,
            "createdAt": self.created_at,
            "dependencies": list(self.dependencies),
            "stories": [t.to_dict() for t in self.tasks],
            "metrics": self.metrics.to_dict(),
        }
        if self.last_run is not None:
            data["lastRun"] = self.last_run.to_dict()
        if self.started_at:
            data["startedAt"] = self.started_at
        if self.completed_at:
            data["completedAt"] = self.completed_at
        return data

    def task(self, task_id: str) -> Optional[Task]:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def all_tasks_completed(self) -> bool:
        return all(t.status == TaskStatus.COMPLETED for t in self.tasks)

    def blocked_tasks(self) -> list[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.BLOCKED]

    def progress(self) -> tuple[int, int]:
        """(completed, total) task counts."""
        done = sum(1 for t in self.tasks if t.status == TaskStatus.COMPLETED)
        return done, len(self.tasks)


def select_task(tasks: list[Task]) -> Optional[Task]:
    """Pick the next task to work on.

    Lowest priority number among pending/active tasks; ties keep declaration
    order. Blocked and completed tasks are never selected.
    """
    candidates = [t for t in tasks if t.status in (TaskStatus.PENDING, TaskStatus.ACTIVE)]
    if not candidates:
        return None
    # min() returns the first minimal element, so declaration order breaks ties
    return min(candidates, key=lambda t: t.priority)
