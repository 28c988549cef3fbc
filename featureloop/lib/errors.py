"""
Error types for featureloop.

Every error that reaches a human carries the next command to run.
Non-zero agent exits are data, not errors, and never show up here.
"""


class FeatureLoopError(Exception):
    """Base class. `next_step` is the concrete command to try next."""

    def __init__(self, message: str, next_step: str | None = None):
        self.next_step = next_step
        super().__init__(message)


class NotFound(FeatureLoopError):
    pass


class UnitNotFound(NotFound):
    def __init__(self, unit_id: str):
        self.unit_id = unit_id
        super().__init__(
            f"Unit '{unit_id}' not found",
            next_step="featureloop list",
        )


class TaskNotFound(NotFound):
    def __init__(self, unit_id: str, task_id: str):
        self.unit_id = unit_id
        self.task_id = task_id
        super().__init__(
            f"Task '{task_id}' not found in unit '{unit_id}'",
            next_step=f"featureloop status {unit_id}",
        )


class InvalidStructure(FeatureLoopError):
    """A persisted record is malformed. Never repaired automatically."""

    def __init__(self, path, message: str):
        self.path = path
        super().__init__(
            f"Invalid record at {path}: {message}",
            next_step=f"Fix {path} by hand, then retry",
        )


class UnitExists(FeatureLoopError):
    def __init__(self, unit_id: str, position: str):
        self.unit_id = unit_id
        self.position = position
        super().__init__(
            f"Unit '{unit_id}' already exists in {position}",
            next_step=f"featureloop status {unit_id}",
        )


class InvalidUnitId(FeatureLoopError):
    def __init__(self, unit_id: str):
        super().__init__(
            f"Invalid unit id '{unit_id}': use lowercase letters, digits, '.', '_' or '-'",
        )


class AgentLaunchError(FeatureLoopError):
    """The agent process could not be started at all."""

    def __init__(self, command: str, cause: Exception):
        self.command = command
        self.cause = cause
        super().__init__(
            f"Could not launch agent '{command}': {cause}",
            next_step=f"Check that '{command}' is installed and on PATH",
        )


class TaskNotBlocked(FeatureLoopError):
    def __init__(self, unit_id: str, task_id: str, status: str):
        super().__init__(
            f"Task '{task_id}' in '{unit_id}' is {status}, not blocked",
            next_step=f"featureloop status {unit_id}",
        )


class AnswerMismatch(FeatureLoopError):
    def __init__(self, unit_id: str, task_id: str, expected: int, got: int):
        self.expected = expected
        self.got = got
        super().__init__(
            f"Task '{task_id}' has {expected} question(s) but {got} answer(s) were given",
            next_step=f"featureloop answer {unit_id} {task_id} " + " ".join(["-a '...'"] * expected),
        )


class InvalidTransition(FeatureLoopError):
    def __init__(self, unit_id: str, from_position: str, to_position: str):
        self.from_position = from_position
        self.to_position = to_position
        super().__init__(
            f"Cannot move '{unit_id}' from {from_position} to {to_position}",
            next_step=f"featureloop move {unit_id} {to_position} --force",
        )


class ConfigError(FeatureLoopError):
    pass


class RunConflict(FeatureLoopError):
    """Another live process is already running this unit."""

    def __init__(self, unit_id: str, pid: int):
        self.unit_id = unit_id
        self.pid = pid
        super().__init__(
            f"Unit '{unit_id}' is already running (pid {pid})",
            next_step="featureloop runs",
        )
