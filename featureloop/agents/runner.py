"""
Agent process runner.

Launches a configured agent CLI, feeds it the prompt on stdin and collects
its output. There is no timeout: a run lasts as long as the agent does.

Two output modes:
- plain: stdout then stderr, captured whole
- stream: stdout is a sequence of JSON events (claude --output-format
  stream-json). Assistant text is echoed live and accumulated, tool calls
  are echoed as one-liners, and the final result event supplies usage.
  Lines that aren't JSON are echoed and kept verbatim.

A process that can't be launched raises AgentLaunchError. A non-zero exit is
returned as data.
"""

import json
import logging
import re
import subprocess
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol

from featureloop.lib.config import AgentSpec
from featureloop.lib.errors import AgentLaunchError

logger = logging.getLogger(__name__)

_INPUT_TOKENS = re.compile(r"Input:\s*([\d,]+)")
_OUTPUT_TOKENS = re.compile(r"Output:\s*([\d,]+)")


@dataclass
class AgentResult:
    output: str
    exit_code: int
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


def parse_token_usage(text: str) -> tuple[int, int]:
    """Pull 'Input: 1,234' / 'Output: 567' counts out of agent output."""
    def _count(pattern: re.Pattern) -> int:
        m = pattern.search(text)
        return int(m.group(1).replace(",", "")) if m else 0
    return _count(_INPUT_TOKENS), _count(_OUTPUT_TOKENS)


def _echo_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class StreamParser:
    """Turns stream-json lines into display text and accumulated output."""

    def __init__(self, echo: Callable[[str], None]):
        self.echo = echo
        self.text_parts: list[str] = []
        self.result_text: Optional[str] = None
        self.input_tokens = 0
        self.output_tokens = 0

    def feed(self, line: str) -> None:
        stripped = line.strip()
        if not stripped:
            return
        try:
            event = json.loads(stripped)
        except json.JSONDecodeError:
            self.echo(line if line.endswith("\n") else line + "\n")
            self.text_parts.append(stripped)
            return
        if not isinstance(event, dict):
            return

        kind = event.get("type")
        if kind == "assistant":
            for block in (event.get("message") or {}).get("content") or []:
                if block.get("type") == "text" and block.get("text"):
                    self.echo(block["text"] + "\n")
                    self.text_parts.append(block["text"])
                elif block.get("type") == "tool_use":
                    self.echo(f"[Tool: {block.get('name', '?')}]\n")
        elif kind == "result":
            duration = (event.get("duration_ms") or 0) / 1000
            turns = event.get("num_turns", "?")
            self.echo(f"\n[Done in {duration:.1f}s, {turns} turns]\n")
            if isinstance(event.get("result"), str):
                self.result_text = event["result"]
            usage = event.get("usage") or {}
            self.input_tokens = usage.get("input_tokens", 0) or 0
            self.output_tokens = usage.get("output_tokens", 0) or 0

    @property
    def output(self) -> str:
        text = "\n".join(self.text_parts)
        if not text and self.result_text:
            return self.result_text
        return text


class AgentRunner:
    """Runs agent processes in a working directory."""

    def __init__(self, cwd: Path | None = None, echo: Callable[[str], None] | None = None):
        self.cwd = cwd
        self.echo = echo or _echo_stdout

    def run(
        self,
        prompt: str,
        command: str,
        args: list[str] | None = None,
        stream: bool = False,
        log_file: Path | None = None,
    ) -> AgentResult:
        cmd = [command, *(args or [])]
        logger.debug(f"Launching agent: {' '.join(cmd)} (stream={stream})")

        if stream:
            result, raw_stdout, raw_stderr = self._run_stream(cmd, prompt)
        else:
            result, raw_stdout, raw_stderr = self._run_plain(cmd, prompt)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_file.write_text(
                f"=== COMMAND ===\n{' '.join(cmd)}\n\n"
                f"=== EXIT CODE ===\n{result.exit_code}\n\n"
                f"=== PROMPT ===\n{prompt}\n\n"
                f"=== STDOUT ===\n{raw_stdout}\n\n"
                f"=== STDERR ===\n{raw_stderr}\n"
            )

        if not result.success:
            logger.warning(f"Agent '{command}' exited with code {result.exit_code}")
        return result

    def _run_plain(self, cmd: list[str], prompt: str) -> tuple[AgentResult, str, str]:
        try:
            proc = subprocess.run(
                cmd,
                cwd=str(self.cwd) if self.cwd else None,
                input=prompt,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise AgentLaunchError(cmd[0], e) from e

        output = proc.stdout + proc.stderr
        input_tokens, output_tokens = parse_token_usage(output)
        result = AgentResult(
            output=output,
            exit_code=proc.returncode,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        return result, proc.stdout, proc.stderr

    def _run_stream(self, cmd: list[str], prompt: str) -> tuple[AgentResult, str, str]:
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(self.cwd) if self.cwd else None,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            raise AgentLaunchError(cmd[0], e) from e

        stderr_lines: list[str] = []

        def _feed_stdin():
            try:
                proc.stdin.write(prompt)
            except BrokenPipeError:
                # Agent exited before reading everything; its exit code tells the story
                logger.debug("Agent closed stdin early")
            finally:
                try:
                    proc.stdin.close()
                except BrokenPipeError:
                    pass

        def _drain_stderr():
            for line in proc.stderr:
                stderr_lines.append(line)
                self.echo(line)

        stdin_thread = threading.Thread(target=_feed_stdin, daemon=True)
        stderr_thread = threading.Thread(target=_drain_stderr, daemon=True)
        stdin_thread.start()
        stderr_thread.start()

        parser = StreamParser(self.echo)
        stdout_lines: list[str] = []
        for line in proc.stdout:
            stdout_lines.append(line)
            parser.feed(line)

        exit_code = proc.wait()
        stdin_thread.join()
        stderr_thread.join()

        raw_stdout = "".join(stdout_lines)
        raw_stderr = "".join(stderr_lines)
        output = parser.output or (raw_stdout + raw_stderr)

        input_tokens, output_tokens = parser.input_tokens, parser.output_tokens
        if not (input_tokens or output_tokens):
            input_tokens, output_tokens = parse_token_usage(output)

        result = AgentResult(
            output=output,
            exit_code=exit_code,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        return result, raw_stdout, raw_stderr


class Executor(Protocol):
    """What the engine and testing loop need: prompt in, result out."""

    name: str

    def execute(self, prompt: str, log_file: Path | None = None) -> AgentResult:
        ...


class AgentExecutor:
    """Binds an AgentRunner to one configured agent."""

    def __init__(self, spec: AgentSpec, runner: AgentRunner | None = None):
        self.spec = spec
        self.runner = runner or AgentRunner()
        self.name = spec.name

    def execute(self, prompt: str, log_file: Path | None = None) -> AgentResult:
        return self.runner.run(
            prompt,
            self.spec.command,
            self.spec.args,
            stream=self.spec.stream,
            log_file=log_file,
        )
