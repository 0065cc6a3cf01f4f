"""Ordering of actionables by a configurable multi-key sort spec."""

from collections.abc import Mapping
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any

from taskopen.environment import format_value
from taskopen.models import Actionable


@dataclass(frozen=True)
class SortKey:
    key: str
    descending: bool = False


def parse_sort_keys(spec: str) -> list[SortKey]:
    """Parse ``"urgency-,annot"`` style specs into sort keys.

    A trailing ``-`` sorts descending, a trailing ``+`` (or nothing) ascending.
    """
    keys = []
    for field in spec.split(","):
        field = field.strip()
        if not field:
            continue
        descending = False
        if field.endswith("-"):
            descending = True
            field = field[:-1]
        elif field.endswith("+"):
            field = field[:-1]
        if field:
            keys.append(SortKey(key=field, descending=descending))
    return keys


def _task_int(task: Mapping[str, Any], key: str) -> int:
    value = task.get(key)
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return 0
    return 0


def _task_float(task: Mapping[str, Any], key: str) -> float:
    value = task.get(key)
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return 0.0
    return 0.0


def _compare(a: Any, b: Any) -> int:
    return (a > b) - (a < b)


def compare_by_key(a: Actionable, b: Actionable, key: str) -> int:
    """Three-way comparison of two actionables on a single key."""
    if key == "annot":
        return _compare(a.text, b.text)
    if key == "entry":
        return _compare(a.entry, b.entry)
    if key == "id":
        return _compare(_task_int(a.task, "id"), _task_int(b.task, "id"))
    if key == "urgency":
        return _compare(_task_float(a.task, "urgency"), _task_float(b.task, "urgency"))
    return _compare(format_value(a.task.get(key)), format_value(b.task.get(key)))


def sort_actionables(actionables: list[Actionable], spec: str) -> list[Actionable]:
    """Return actionables ordered by the sort spec.

    The sort is stable: candidates that compare equal on every key keep the
    order the matcher produced them in.
    """
    keys = parse_sort_keys(spec)
    if not keys:
        return list(actionables)

    def compare(a: Actionable, b: Actionable) -> int:
        for sort_key in keys:
            result = compare_by_key(a, b, sort_key.key)
            if result:
                return -result if sort_key.descending else result
        return 0

    return sorted(actionables, key=cmp_to_key(compare))
