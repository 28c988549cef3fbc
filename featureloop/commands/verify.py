"""featureloop test"""

import os

from featureloop.agents.runner import AgentExecutor, AgentRunner
from featureloop.commands.output import print_next_steps
from featureloop.lib.config import LoopConfig, validate_agent_binary
from featureloop.state.runs import RunRegistry
from featureloop.state.store import UnitStore
from featureloop.workflow.testing import VerificationLoop


def cmd_test(args, config: LoopConfig) -> int:
    store = UnitStore(config.state_root)
    store.read(args.unit)

    agent = config.agent(args.agent)
    validate_agent_binary(agent)

    registry = RunRegistry(config.state_root)
    registry.reconcile()
    registry.register(args.unit, os.getpid(), agent.name)

    executor = AgentExecutor(agent, AgentRunner(cwd=config.project_dir))
    loop = VerificationLoop(store, executor, config)

    print(f"Verifying {args.unit} with {agent.name}")
    run_status = "interrupted"
    try:
        outcome = loop.run(args.unit)
        run_status = "finished"
    finally:
        registry.update_status(args.unit, run_status)

    print(f"\n{outcome.result.value.upper()}: {outcome.message}")
    if outcome.report_path:
        print(f"Report: {outcome.report_path}")
    for issue in outcome.issues:
        print(f"  - {issue}")
    print_next_steps(outcome.next_steps)
    return outcome.exit_code
