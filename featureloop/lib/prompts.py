"""
Agent prompt templates.

Templates live in the package prompts/ directory as markdown with
str.format placeholders ({unit_id}); literal braces are doubled. HTML
comments are author notes and never reach the agent.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path
from string import Formatter

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"

_NOTE = re.compile(r"<!--.*?-->\s*", re.DOTALL)


class PromptError(Exception):
    """A template is missing or can't be filled in."""


@lru_cache(maxsize=32)
def load_prompt(name: str) -> str:
    """Template text for `name`, with author notes removed.

    Raises:
        PromptError: If prompts/<name>.md doesn't exist.
    """
    path = PROMPTS_DIR / f"{name}.md"
    if not path.is_file():
        raise PromptError(f"Prompt template '{name}' not found at {path}")
    logger.debug(f"Loading prompt template {name}")
    return _NOTE.sub("", path.read_text()).lstrip()


def placeholders(name: str) -> set[str]:
    """Names a template expects to be filled in."""
    return {field for _, field, _, _ in Formatter().parse(load_prompt(name)) if field}


def render_prompt(name: str, **values) -> str:
    """Fill a template.

    Raises:
        PromptError: If the template is missing or a placeholder has no value.
    """
    missing = placeholders(name) - values.keys()
    if missing:
        raise PromptError(
            f"Missing required variable(s) {', '.join(sorted(missing))} for prompt '{name}'"
        )
    return load_prompt(name).format(**values)


def build_section(content: str | None, header: str, empty_msg: str | None = None) -> str:
    """A "## Header" block around content; empty_msg stands in when content is empty."""
    body = content or empty_msg
    if body is None:
        return ""
    return f"{header}\n\n{body}\n"


def clear_cache() -> None:
    load_prompt.cache_clear()
