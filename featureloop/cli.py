#!/usr/bin/env python3
"""featureloop CLI entrypoint."""

import argparse
import logging
import sys
from pathlib import Path

from featureloop.commands import answer as cmd_answer_module
from featureloop.commands import init as cmd_init_module
from featureloop.commands import list as cmd_list_module
from featureloop.commands import move as cmd_move_module
from featureloop.commands import new as cmd_new_module
from featureloop.commands import run as cmd_run_module
from featureloop.commands import runs as cmd_runs_module
from featureloop.commands import status as cmd_status_module
from featureloop.commands import verify as cmd_verify_module
from featureloop.commands.output import print_error
from featureloop.lib.config import load_config
from featureloop.lib.constants import EXIT_CONFIG, EXIT_ERROR
from featureloop.lib.errors import ConfigError, FeatureLoopError
from featureloop.state.models import Position

logger = logging.getLogger(__name__)


def get_project_dir(args) -> Path:
    return Path(args.project).resolve() if args.project else Path.cwd()


def with_config(handler):
    """Wrap a cmd_*(args, config) so it gets the loaded project config."""
    def _run(args):
        config = load_config(get_project_dir(args))
        return handler(args, config)
    return _run


def cmd_init(args):
    return cmd_init_module.cmd_init(args, get_project_dir(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="featureloop",
        description="Drive a coding agent through feature units until they are verified",
    )
    parser.add_argument("--project", "-C", help="Project directory (default: current directory)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p = subparsers.add_parser("init", help="Write featureloop.yaml and create state directories")
    p.set_defaults(func=cmd_init)

    p = subparsers.add_parser("new", help="Create a unit in pending")
    p.add_argument("unit", help="Unit id (lowercase, digits, . _ -)")
    p.add_argument("-d", "--description", help="What the feature is")
    p.add_argument("--from-json", help="JSON file with the unit's tasks")
    p.add_argument("--task", action="append", help="Add a task by title (repeatable)")
    p.add_argument("--spec", help="Markdown spec to attach")
    p.add_argument("--depends-on", action="append", help="Unit that must finish first (repeatable)")
    p.set_defaults(func=with_config(cmd_new_module.cmd_new))

    p = subparsers.add_parser("list", help="List units")
    p.add_argument("--position", choices=[pos.value for pos in Position])
    p.set_defaults(func=with_config(cmd_list_module.cmd_list))

    p = subparsers.add_parser("status", help="Show one unit, or all units by position")
    p.add_argument("unit", nargs="?")
    p.set_defaults(func=with_config(cmd_status_module.cmd_status))

    p = subparsers.add_parser("start", help="Run the agent over a unit's tasks")
    p.add_argument("unit")
    p.add_argument("--agent", "-a", help="Agent name from featureloop.yaml")
    p.add_argument("--iterations", "-n", type=int, help="Iteration budget for this run")
    p.set_defaults(func=with_config(cmd_run_module.cmd_start))

    p = subparsers.add_parser("test", help="Verify a unit in testing")
    p.add_argument("unit")
    p.add_argument("--agent", "-a", help="Agent name from featureloop.yaml")
    p.set_defaults(func=with_config(cmd_verify_module.cmd_test))

    p = subparsers.add_parser("answer", help="Answer a blocked task's questions")
    p.add_argument("unit")
    p.add_argument("task")
    p.add_argument("-a", "--answer", action="append", help="One answer per question, in order")
    p.set_defaults(func=with_config(cmd_answer_module.cmd_answer))

    p = subparsers.add_parser("move", help="Move a unit to another position")
    p.add_argument("unit")
    p.add_argument("position", choices=[pos.value for pos in Position])
    p.add_argument("--force", action="store_true", help="Allow moves the lifecycle doesn't")
    p.set_defaults(func=with_config(cmd_move_module.cmd_move))

    p = subparsers.add_parser("complete", help="Mark a unit completed by hand")
    p.add_argument("unit")
    p.set_defaults(func=with_config(cmd_move_module.cmd_complete))

    p = subparsers.add_parser("runs", help="Show tracked runs, marking dead ones stale")
    p.set_defaults(func=with_config(cmd_runs_module.cmd_runs))

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except ConfigError as e:
        print_error(e)
        return EXIT_CONFIG
    except FeatureLoopError as e:
        print_error(e)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
