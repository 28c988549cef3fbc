"""featureloop start

Runs the engine in the foreground. The run is registered in runs.json so a
crashed or killed run shows up as stale in `featureloop runs`.
"""

import logging
import os

from featureloop.agents.runner import AgentExecutor, AgentRunner
from featureloop.commands.output import print_next_steps, print_questions
from featureloop.lib.config import LoopConfig, validate_agent_binary
from featureloop.state.runs import RunRegistry
from featureloop.state.store import UnitStore
from featureloop.workflow.engine import Engine

logger = logging.getLogger(__name__)


def cmd_start(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)
    store.read(args.unit)

    agent = config.agent(args.agent)
    validate_agent_binary(agent)

    registry = RunRegistry(config.state_root)
    registry.reconcile()
    registry.register(args.unit, os.getpid(), agent.name)

    executor = AgentExecutor(agent, AgentRunner(cwd=config.project_dir))
    engine = Engine(store, executor, config)

    print(f"Starting {args.unit} with {agent.name} ({agent.display()})")
    run_status = "interrupted"
    try:
        outcome = engine.run(args.unit, max_iterations=args.iterations, handle_signals=True)
        run_status = "finished"
    finally:
        registry.update_status(args.unit, run_status)

    print(f"\n{outcome.status.upper()}: {outcome.message}")
    if outcome.iterations:
        print(f"Iterations this run: {outcome.iterations}")
    print_questions(outcome.questions)
    print_next_steps(outcome.next_steps)
    return outcome.exit_code
