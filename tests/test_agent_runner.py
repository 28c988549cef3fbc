"""Tests for featureloop.agents.runner.

These launch real (tiny) processes: cat, sh.
"""

import json

import pytest

from featureloop.agents.runner import (
    AgentExecutor,
    AgentRunner,
    StreamParser,
    parse_token_usage,
)
from featureloop.lib.config import AgentSpec
from featureloop.lib.errors import AgentLaunchError


def quiet_runner(tmp_path=None):
    echoed = []
    return AgentRunner(cwd=tmp_path, echo=echoed.append), echoed


class TestPlainMode:
    """Tests for non-stream runs."""

    def test_prompt_goes_to_stdin(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        result = runner.run("hello agent", "cat")
        assert result.output == "hello agent"
        assert result.exit_code == 0
        assert result.success

    def test_stdout_then_stderr(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        result = runner.run("", "sh", ["-c", "echo out; echo err >&2"])
        assert result.output == "out\nerr\n"

    def test_nonzero_exit_is_data(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        result = runner.run("", "sh", ["-c", "echo partial; exit 3"])
        assert result.exit_code == 3
        assert not result.success
        assert "partial" in result.output

    def test_launch_failure_raises(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        with pytest.raises(AgentLaunchError):
            runner.run("x", "definitely-not-a-real-agent-binary")

    def test_writes_log_file(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        log_file = tmp_path / "logs" / "run.log"
        runner.run("prompt text", "cat", log_file=log_file)
        text = log_file.read_text()
        assert "=== COMMAND ===\ncat" in text
        assert "=== EXIT CODE ===\n0" in text
        assert "prompt text" in text

    def test_token_usage_from_text(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        result = runner.run("", "sh", ["-c", "echo 'Input: 1,200 Output: 340'"])
        assert (result.input_tokens, result.output_tokens) == (1200, 340)


class TestStreamMode:
    """Tests for stream-json runs."""

    def _script(self, tmp_path, lines):
        path = tmp_path / "events.txt"
        path.write_text("\n".join(lines) + "\n")
        return ["-c", f"cat > /dev/null; cat {path}"]

    def test_accumulates_assistant_text(self, tmp_path):
        lines = [
            json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": "Working"}]}}),
            json.dumps({"type": "assistant", "message": {"content": [{"type": "tool_use", "name": "Edit"}]}}),
            json.dumps({"type": "assistant", "message": {"content": [{"type": "text", "text": "<promise>TASK_COMPLETE</promise>"}]}}),
            json.dumps({"type": "result", "result": "ignored", "duration_ms": 1500, "num_turns": 2,
                        "usage": {"input_tokens": 10, "output_tokens": 4}}),
        ]
        runner, echoed = quiet_runner(tmp_path)
        result = runner.run("prompt", "sh", self._script(tmp_path, lines), stream=True)

        assert result.output == "Working\n<promise>TASK_COMPLETE</promise>"
        assert (result.input_tokens, result.output_tokens) == (10, 4)
        assert "[Tool: Edit]\n" in echoed
        assert any("Done in 1.5s" in e for e in echoed)

    def test_result_text_used_when_no_assistant_text(self, tmp_path):
        lines = [json.dumps({"type": "result", "result": "final answer"})]
        runner, _ = quiet_runner(tmp_path)
        result = runner.run("p", "sh", self._script(tmp_path, lines), stream=True)
        assert result.output == "final answer"

    def test_non_json_lines_kept(self, tmp_path):
        runner, echoed = quiet_runner(tmp_path)
        result = runner.run("p", "sh", self._script(tmp_path, ["plain line"]), stream=True)
        assert result.output == "plain line"
        assert "plain line\n" in echoed

    def test_stream_exit_code(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        result = runner.run("p", "sh", ["-c", "cat > /dev/null; exit 2"], stream=True)
        assert result.exit_code == 2

    def test_stream_launch_failure(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        with pytest.raises(AgentLaunchError):
            runner.run("p", "definitely-not-a-real-agent-binary", stream=True)


class TestHelpers:
    """Tests for parse_token_usage, StreamParser and AgentExecutor."""

    def test_parse_token_usage_missing(self):
        assert parse_token_usage("nothing") == (0, 0)

    def test_stream_parser_ignores_blank_lines(self):
        parser = StreamParser(lambda s: None)
        parser.feed("\n")
        assert parser.output == ""

    def test_executor_uses_spec(self, tmp_path):
        runner, _ = quiet_runner(tmp_path)
        executor = AgentExecutor(AgentSpec(name="echoer", command="cat"), runner)
        assert executor.name == "echoer"
        assert executor.execute("ping").output == "ping"
