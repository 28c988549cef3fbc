"""
Project configuration for featureloop.

Loads featureloop.yaml from the project root. The file is validated against
schemas/config.schema.json and materialized into dataclasses. Anything the
file leaves out falls back to the defaults below.

Example:

    default_agent: claude
    default_iterations: 10
    agents:
      claude:
        command: claude
        args: ["--print", "--dangerously-skip-permissions"]
      claude-stream:
        command: claude
        args: ["-p", "--output-format", "stream-json", "--verbose"]
        stream: true
    testing:
      instructions: "Use the browser tool for UI checks."
      health_check_timeout: 30
    scripts:
      setup: scripts/setup.sh
      health_check: scripts/health.sh
    docs:
      path: docs/
"""

import logging
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from featureloop.lib.constants import (
    CONFIG_FILENAME,
    HEALTH_CHECK_TIMEOUT_DEFAULT,
    MAX_HEALTH_FIX_ATTEMPTS_DEFAULT,
    STATE_DIR_DEFAULT,
)
from featureloop.lib.errors import ConfigError
from featureloop.lib.validate import ValidationError, validate

logger = logging.getLogger(__name__)


DEFAULT_CONFIG_TEXT = """\
# featureloop configuration
default_agent: claude
default_iterations: 10
agents:
  claude:
    command: claude
    args: ["--print", "--dangerously-skip-permissions"]
  codex:
    command: codex
    args: ["exec", "--dangerously-bypass-approvals-and-sandbox", "-"]
testing:
  health_check_timeout: 30
  max_health_fix_attempts: 3
scripts: {}
docs:
  auto_update: true
"""


@dataclass
class AgentSpec:
    """How to launch one agent. The prompt always goes via stdin."""
    name: str
    command: str
    args: list[str] = field(default_factory=list)
    stream: bool = False

    def display(self) -> str:
        return shlex.join([self.command, *self.args])


@dataclass
class VerificationConfig:
    instructions: str = ""
    project_verification_instructions: str = ""
    health_check_timeout: int = HEALTH_CHECK_TIMEOUT_DEFAULT
    max_health_fix_attempts: int = MAX_HEALTH_FIX_ATTEMPTS_DEFAULT


@dataclass
class ScriptsConfig:
    """Optional environment scripts, relative to the project root."""
    setup: Optional[str] = None
    start: Optional[str] = None
    health_check: Optional[str] = None
    teardown: Optional[str] = None


@dataclass
class DocsConfig:
    path: Optional[str] = None
    auto_update: bool = True


@dataclass
class LoopConfig:
    """featureloop.yaml, materialized."""
    default_agent: str
    default_iterations: int
    agents: dict[str, AgentSpec]
    state_dir: str = STATE_DIR_DEFAULT
    testing: VerificationConfig = field(default_factory=VerificationConfig)
    scripts: ScriptsConfig = field(default_factory=ScriptsConfig)
    docs: DocsConfig = field(default_factory=DocsConfig)
    project_dir: Path = field(default_factory=Path.cwd)

    @property
    def state_root(self) -> Path:
        return self.project_dir / self.state_dir

    def agent(self, name: str | None = None) -> AgentSpec:
        """Get an agent by name, or the default agent."""
        name = name or self.default_agent
        if name not in self.agents:
            raise ConfigError(
                f"Unknown agent '{name}'. Configured agents: {', '.join(sorted(self.agents))}",
                next_step=f"Add '{name}' under agents: in {CONFIG_FILENAME}",
            )
        return self.agents[name]


def parse_config(data: dict, project_dir: Path) -> LoopConfig:
    """Validate raw config data and build a LoopConfig."""
    try:
        validate(data, "config")
    except ValidationError as e:
        raise ConfigError(
            f"Invalid {CONFIG_FILENAME}: {e}",
            next_step=f"Fix {project_dir / CONFIG_FILENAME}",
        ) from None

    agents = {
        name: AgentSpec(
            name=name,
            command=spec["command"],
            args=list(spec.get("args", [])),
            stream=spec.get("stream", False),
        )
        for name, spec in data["agents"].items()
    }

    if data["default_agent"] not in agents:
        raise ConfigError(
            f"default_agent '{data['default_agent']}' is not defined under agents:",
            next_step=f"Fix {project_dir / CONFIG_FILENAME}",
        )

    return LoopConfig(
        default_agent=data["default_agent"],
        default_iterations=data["default_iterations"],
        agents=agents,
        state_dir=data.get("state_dir", STATE_DIR_DEFAULT),
        testing=VerificationConfig(**data.get("testing", {})),
        scripts=ScriptsConfig(**data.get("scripts", {})),
        docs=DocsConfig(**data.get("docs", {})),
        project_dir=project_dir,
    )


def load_config(project_dir: Path) -> LoopConfig:
    """Load featureloop.yaml from project_dir.

    Raises:
        ConfigError: If the file is missing, unparseable or invalid.
    """
    config_path = project_dir / CONFIG_FILENAME
    if not config_path.exists():
        raise ConfigError(
            f"No {CONFIG_FILENAME} in {project_dir}",
            next_step="featureloop init",
        )

    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse {config_path}: {e}",
            next_step=f"Fix {config_path}",
        ) from None

    if not isinstance(data, dict):
        raise ConfigError(
            f"{config_path} must contain a mapping",
            next_step=f"Fix {config_path}",
        )

    logger.debug(f"Loaded config from {config_path}")
    return parse_config(data, project_dir)


def write_default_config(project_dir: Path) -> Path:
    """Write a starter featureloop.yaml unless one exists."""
    config_path = project_dir / CONFIG_FILENAME
    if not config_path.exists():
        config_path.write_text(DEFAULT_CONFIG_TEXT)
    return config_path


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None


def validate_agent_binary(agent: AgentSpec) -> None:
    """Fail early, with a fix hint, when an agent's binary is missing.

    Raises:
        ConfigError: If the binary cannot be found.
    """
    if check_binary_available(agent.command):
        return

    error_lines = [
        f"Required tool '{agent.command}' for agent '{agent.name}' is not installed.",
        "",
        "To fix this, either:",
        f"  1. Install {agent.command}",
        f"  2. Point agents.{agent.name}.command in {CONFIG_FILENAME} at another tool:",
        "",
        "     agents:",
        f"       {agent.name}:",
        "         command: claude",
        "         args: [\"--print\"]",
    ]
    raise ConfigError("\n".join(error_lines), next_step=f"Edit {CONFIG_FILENAME}")
