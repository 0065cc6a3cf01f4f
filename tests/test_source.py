"""Tests for the task source interface."""

import os
import threading
from pathlib import Path
from typing import Any

import pytest

from taskopen.config import Config, GeneralConfig
from taskopen.models import ActionRule
from taskopen.processor import TaskProcessor
from taskopen.selector import SelectionOutcome
from taskopen.source import TaskSource


class InMemorySource(TaskSource):
    """In-memory source for testing."""

    def __init__(self, tasks: list[dict[str, Any]]) -> None:
        """Initialize in-memory source."""
        self.tasks = tasks
        self.calls: list[list[str]] = []

    def fetch(self, filters: list[str], cancel: threading.Event | None = None) -> list[dict[str, Any]]:
        """Return tasks carrying every +tag in the filters."""
        self.calls.append(list(filters))
        tags = [f[1:] for f in filters if f.startswith("+") and f[1:].islower()]
        return [task for task in self.tasks if all(tag in task.get("tags", []) for tag in tags)]

    def version(self, cancel: threading.Event | None = None) -> str:
        """Return a fixed version."""
        return "in-memory"


def test_task_source_is_abstract() -> None:
    """Test that a source must implement fetch and version."""

    class Incomplete(TaskSource):
        def version(self, cancel: threading.Event | None = None) -> str:
            return "x"

    with pytest.raises(TypeError):
        Incomplete()


def test_in_memory_source() -> None:
    """Test the in-memory source filtering."""
    source = InMemorySource([{"uuid": "a", "tags": ["work"]}, {"uuid": "b", "tags": ["home"]}])
    assert [t["uuid"] for t in source.fetch(["+work"])] == ["a"]
    assert len(source.fetch(["+PENDING"])) == 2
    assert source.version() == "in-memory"


@pytest.mark.skipif(os.name != "posix", reason="runs a shell action")
def test_end_to_end_run(tmp_path: Path) -> None:
    """Test fetching, matching and executing a shell action."""
    out = tmp_path / "out.txt"
    rule = ActionRule(
        name="record",
        regex=r"^(\w+)://(.*)$",
        command=f'echo "$UUID $MATCH_1 $TASK_PROJECT" > {out}',
        filtercommand="test -n $MATCH_2",
    )
    config = Config(general=GeneralConfig(editor="vim", task_attributes="project"), actions=[rule])
    source = InMemorySource(
        [
            {
                "uuid": "abc",
                "id": 1,
                "project": "home",
                "tags": ["work"],
                "annotations": [{"entry": "20240101T000000Z", "description": "https://example.com"}],
            },
            {"uuid": "def", "id": 2, "tags": ["home"], "annotations": [{"description": "ftp://x"}]},
        ]
    )
    processor = TaskProcessor(config, source=source, environ=dict(os.environ))

    selection = processor.process_tasks(["+work"], interactive=False)

    assert selection.outcome is SelectionOutcome.EXECUTE
    assert source.calls == [["+work"]]
    assert out.read_text() == "abc https home\n"
