"""Decides what to do with the sorted candidates."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

import structlog

from taskopen.errors import AmbiguousSelectionError
from taskopen.menu import Menu
from taskopen.models import Actionable

logger = structlog.get_logger()


class SelectionOutcome(str, Enum):
    NONE = "none"
    EXECUTE = "execute"
    LIST = "list"
    CANCELLED = "cancelled"


class MultiplePolicy(str, Enum):
    """What a non-interactive run does with more than one candidate."""

    LIST = "list"
    FIRST = "first"
    ERROR = "error"


@dataclass
class Selection:
    outcome: SelectionOutcome
    candidates: list[Actionable] = field(default_factory=list)
    chosen: Actionable | None = None


class Selector:
    """Picks the candidate to execute based on count and interactivity."""

    def __init__(self, menu: Menu | None = None, multiple_policy: MultiplePolicy | str = MultiplePolicy.LIST) -> None:
        self.menu = menu
        self.multiple_policy = MultiplePolicy(multiple_policy)

    def select(self, candidates: Sequence[Actionable], interactive: bool) -> Selection:
        """Select among candidates.

        Args:
            candidates: Sorted actionables
            interactive: Whether a menu may be shown

        Returns:
            Selection describing the outcome and the chosen actionable, if any

        Raises:
            AmbiguousSelectionError: Multiple non-interactive candidates under the ``error`` policy
        """
        candidates = list(candidates)

        if not candidates:
            return Selection(SelectionOutcome.NONE)

        if len(candidates) == 1:
            return Selection(SelectionOutcome.EXECUTE, candidates, candidates[0])

        if interactive and self.menu is not None:
            chosen = self.menu.choose(candidates)
            if chosen is None:
                logger.info("Selection cancelled by user")
                return Selection(SelectionOutcome.CANCELLED, candidates)
            return Selection(SelectionOutcome.EXECUTE, candidates, chosen)

        if self.multiple_policy is MultiplePolicy.FIRST:
            return Selection(SelectionOutcome.EXECUTE, candidates, candidates[0])
        if self.multiple_policy is MultiplePolicy.ERROR:
            raise AmbiguousSelectionError(
                f"{len(candidates)} actions match",
                details=", ".join(f"{c.rule.name}: {c.text}" for c in candidates),
                suggestions=["Narrow the task filter", "Run interactively to choose an action"],
            )
        return Selection(SelectionOutcome.LIST, candidates)
