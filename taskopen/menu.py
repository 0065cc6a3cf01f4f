"""Menu collaborator used to pick one of several candidates."""

from collections.abc import Callable, Sequence
from typing import Protocol

import structlog

from taskopen.models import Actionable

logger = structlog.get_logger()


class Menu(Protocol):
    """Chooses a single actionable, or None when the user cancels."""

    def choose(self, candidates: Sequence[Actionable]) -> Actionable | None: ...


def describe(actionable: Actionable) -> str:
    """One-line description of a candidate for listings and menus."""
    description = actionable.task.get("description", "")
    line = f"{actionable.rule.name}: {actionable.text}"
    if description and description != actionable.text:
        line += f"  ({description})"
    return line


class NumberedMenu:
    """Prints numbered candidates and reads the choice from stdin."""

    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ) -> None:
        self.input_func = input_func
        self.output_func = output_func

    def choose(self, candidates: Sequence[Actionable]) -> Actionable | None:
        for index, actionable in enumerate(candidates, 1):
            self.output_func(f"{index:>3}) {describe(actionable)}")

        while True:
            try:
                answer = self.input_func("Select an action (q to cancel): ").strip()
            except EOFError:
                logger.debug("Menu input closed")
                return None

            if answer in ("", "q", "quit"):
                return None
            if answer.isdigit() and 1 <= int(answer) <= len(candidates):
                return candidates[int(answer) - 1]
            self.output_func(f"Please enter a number between 1 and {len(candidates)}")
