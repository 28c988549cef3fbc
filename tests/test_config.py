"""Tests for featureloop.lib.config."""

from unittest.mock import patch

import pytest

from featureloop.lib.config import (
    AgentSpec,
    load_config,
    parse_config,
    validate_agent_binary,
    write_default_config,
)
from featureloop.lib.errors import ConfigError

VALID = """\
default_agent: claude
default_iterations: 7
agents:
  claude:
    command: claude
    args: ["--print"]
  streamer:
    command: claude
    args: ["-p", "--output-format", "stream-json"]
    stream: true
testing:
  instructions: Use curl.
  health_check_timeout: 10
scripts:
  setup: scripts/setup.sh
docs:
  path: docs/
"""


class TestLoadConfig:
    """Tests for load_config()."""

    def test_loads_valid_config(self, tmp_path):
        (tmp_path / "featureloop.yaml").write_text(VALID)
        config = load_config(tmp_path)

        assert config.default_iterations == 7
        assert config.agents["claude"].args == ["--print"]
        assert config.agents["streamer"].stream is True
        assert config.testing.instructions == "Use curl."
        assert config.testing.health_check_timeout == 10
        assert config.testing.max_health_fix_attempts == 3
        assert config.scripts.setup == "scripts/setup.sh"
        assert config.scripts.teardown is None
        assert config.docs.auto_update is True
        assert config.state_root == tmp_path / ".featureloop"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError) as exc:
            load_config(tmp_path)
        assert exc.value.next_step == "featureloop init"

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "featureloop.yaml").write_text("agents: [unclosed")
        with pytest.raises(ConfigError):
            load_config(tmp_path)

    def test_schema_violation(self, tmp_path):
        (tmp_path / "featureloop.yaml").write_text("default_agent: x\ndefault_iterations: 0\nagents: {}\n")
        with pytest.raises(ConfigError, match="Invalid featureloop.yaml"):
            load_config(tmp_path)

    def test_default_agent_must_exist(self, tmp_path):
        with pytest.raises(ConfigError, match="default_agent"):
            parse_config(
                {"default_agent": "nope", "default_iterations": 1, "agents": {"a": {"command": "a"}}},
                tmp_path,
            )

    def test_default_config_is_valid(self, tmp_path):
        write_default_config(tmp_path)
        config = load_config(tmp_path)
        assert config.default_agent in config.agents


class TestAgentLookup:
    """Tests for LoopConfig.agent() and binary checks."""

    def test_unknown_agent(self, config):
        with pytest.raises(ConfigError, match="Unknown agent"):
            config.agent("missing")

    def test_default_agent(self, config):
        assert config.agent().name == "fake"

    def test_missing_binary(self):
        with patch("featureloop.lib.config.shutil.which", return_value=None):
            with pytest.raises(ConfigError, match="not installed"):
                validate_agent_binary(AgentSpec(name="x", command="no-such-agent"))

    def test_present_binary(self):
        with patch("featureloop.lib.config.shutil.which", return_value="/usr/bin/claude"):
            validate_agent_binary(AgentSpec(name="claude", command="claude"))
