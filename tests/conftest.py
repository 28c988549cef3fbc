"""Shared fixtures: a temp project with config, a store and a scripted agent."""

from pathlib import Path

import pytest

from featureloop.agents.runner import AgentResult
from featureloop.lib.config import AgentSpec, LoopConfig
from featureloop.state.models import Task, TaskStatus, Unit
from featureloop.state.store import UnitStore


class FakeExecutor:
    """Returns scripted outputs in order and records every prompt.

    An entry may be a string, an AgentResult, or a callable taking the prompt
    (handy for agents that edit state as a side effect).
    """

    name = "fake"

    def __init__(self, outputs=None, default=""):
        self.outputs = list(outputs or [])
        self.default = default
        self.prompts: list[str] = []
        self.log_files: list[Path] = []

    def execute(self, prompt, log_file=None):
        self.prompts.append(prompt)
        self.log_files.append(log_file)
        item = self.outputs.pop(0) if self.outputs else self.default
        if callable(item):
            item = item(prompt)
        if isinstance(item, AgentResult):
            return item
        return AgentResult(output=item, exit_code=0)


@pytest.fixture
def config(tmp_path):
    return LoopConfig(
        default_agent="fake",
        default_iterations=5,
        agents={"fake": AgentSpec(name="fake", command="cat")},
        project_dir=tmp_path,
    )


@pytest.fixture
def store(config):
    s = UnitStore(config.state_root)
    s.ensure_dirs()
    return s


def make_task(task_id, priority=1, status=TaskStatus.PENDING, **kwargs) -> Task:
    return Task(
        id=task_id,
        title=kwargs.pop("title", f"Task {task_id}"),
        acceptance_criteria=kwargs.pop("acceptance_criteria", [f"{task_id} works"]),
        status=status,
        priority=priority,
        **kwargs,
    )


def make_unit(name="auth", tasks=None, **kwargs) -> Unit:
    if tasks is None:
        tasks = [make_task("US-001", 1), make_task("US-002", 2)]
    return Unit(name=name, description=kwargs.pop("description", f"The {name} feature"), tasks=tasks, **kwargs)


@pytest.fixture
def unit_factory(store):
    """Create a unit in pending and return its id."""
    def _create(name="auth", tasks=None, spec_text=None, **kwargs):
        store.create(make_unit(name, tasks, **kwargs), spec_text=spec_text)
        return name
    return _create
