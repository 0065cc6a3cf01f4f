"""Tests for actionable sorting."""

from typing import Any

from taskopen.models import ActionRule, Actionable
from taskopen.sorter import SortKey, parse_sort_keys, sort_actionables

RULE = ActionRule(name="files", command="xdg-open $FILE")


def actionable(text: str, entry: str = "", **task: Any) -> Actionable:
    return Actionable(text=text, task_id=str(task.get("uuid", "")), task=task, rule=RULE, environment={}, entry=entry)


def test_parse_sort_keys() -> None:
    """Test parsing of direction suffixes."""
    assert parse_sort_keys("urgency-,annot") == [SortKey("urgency", True), SortKey("annot", False)]
    assert parse_sort_keys(" id+ , entry ") == [SortKey("id", False), SortKey("entry", False)]
    assert parse_sort_keys("") == []


def test_urgency_ties_broken_by_text() -> None:
    """Test descending urgency with ascending text as tie breaker."""
    items = [
        actionable("b.txt", urgency=5.0),
        actionable("c.txt", urgency=9.1),
        actionable("a.txt", urgency=5.0),
    ]

    ordered = sort_actionables(items, "urgency-,annot")

    assert [a.text for a in ordered] == ["c.txt", "a.txt", "b.txt"]


def test_descending_keeps_ties_stable() -> None:
    """Test that descending order does not reverse equal candidates."""
    items = [actionable("first", urgency=1), actionable("second", urgency=1), actionable("top", urgency=2)]

    ordered = sort_actionables(items, "urgency-")

    assert [a.text for a in ordered] == ["top", "first", "second"]


def test_sort_by_id_and_entry() -> None:
    """Test integer ids and entry timestamps."""
    items = [
        actionable("x", entry="20240301T000000Z", id=10),
        actionable("y", entry="20240101T000000Z", id=9),
    ]

    assert [a.text for a in sort_actionables(items, "id")] == ["y", "x"]
    assert [a.text for a in sort_actionables(items, "entry-")] == ["x", "y"]


def test_sort_by_other_attribute() -> None:
    """Test that unknown keys compare the attribute's string form."""
    items = [actionable("x", project="work"), actionable("y", project="home"), actionable("z")]

    assert [a.text for a in sort_actionables(items, "project")] == ["z", "y", "x"]


def test_empty_spec_keeps_order() -> None:
    """Test that an empty sort spec returns a copy in input order."""
    items = [actionable("b"), actionable("a")]
    ordered = sort_actionables(items, "")
    assert ordered == items
    assert ordered is not items
