"""Shared printing for command results."""

from featureloop.lib.errors import FeatureLoopError


def print_next_steps(steps: list[str]) -> None:
    if not steps:
        return
    print()
    print("Next:")
    for step in steps:
        print(f"  {step}")


def print_questions(questions: dict[str, list[str]]) -> None:
    for task_id, qs in questions.items():
        print(f"\n{task_id} needs answers:")
        for i, q in enumerate(qs, 1):
            print(f"  {i}. {q}")


def print_error(e: FeatureLoopError) -> None:
    print(f"ERROR: {e}")
    if e.next_step:
        print_next_steps([e.next_step])
