"""Tests for the Taskwarrior task source."""

import json
import os
import stat
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from taskopen.errors import (
    CommandFailedError,
    ErrorType,
    ExecutionCancelledError,
    RetryExhaustedError,
    SpawnError,
    TaskSourceError,
)
from taskopen.models import ExecutionResult
from taskopen.sources.taskwarrior import DEFAULT_ARGS, TaskwarriorSource

TASKS = [
    {
        "id": 1,
        "uuid": "abc-123",
        "description": "Write report",
        "status": "pending",
        "urgency": 4.2,
        "annotations": [{"entry": "20240101T000000Z", "description": "Notes: ~/report.md"}],
    }
]


def make_source(stdout: str = "", **kwargs) -> tuple[TaskwarriorSource, MagicMock]:
    executor = MagicMock()
    executor.execute.return_value = ExecutionResult(stdout=stdout)
    return TaskwarriorSource(executor=executor, **kwargs), executor


def test_fetch_tasks() -> None:
    """Test exporting tasks with the default arguments."""
    source, executor = make_source(json.dumps(TASKS), task_args=["rc.context=none"])

    tasks = source.fetch(["+work", "project:home"])

    assert tasks == TASKS
    cmd, options = executor.execute.call_args.args
    assert cmd == ["task"] + DEFAULT_ARGS + ["rc.context=none", "+work", "project:home", "export"]
    assert options.capture_output is True
    assert options.timeout == 10.0
    assert options.retry.max_attempts == 3


def test_fetch_empty_output() -> None:
    """Test that empty output means no tasks."""
    source, _ = make_source("\n")
    assert source.fetch([]) == []


@pytest.mark.parametrize("stdout", ["not json", json.dumps({"id": 1}), json.dumps([1, 2])])
def test_fetch_unexpected_output(stdout: str) -> None:
    """Test that malformed exports raise TaskSourceError."""
    source, _ = make_source(stdout)
    with pytest.raises(TaskSourceError):
        source.fetch([])


def test_taskwarrior_not_found() -> None:
    """Test the error when the task binary cannot be started."""
    source, executor = make_source()
    executor.execute.side_effect = SpawnError("missing", command="task", result=ExecutionResult(exit_code=127))

    with pytest.raises(TaskSourceError) as exc_info:
        source.fetch([])

    assert exc_info.value.error_type is ErrorType.TASKWARRIOR_NOT_FOUND


@pytest.mark.parametrize("error_cls", [CommandFailedError, RetryExhaustedError])
def test_task_command_failed(error_cls: type) -> None:
    """Test that a failing task command reports its stderr."""
    source, executor = make_source()
    failure = CommandFailedError(
        "failed",
        command="task",
        result=ExecutionResult(exit_code=2, stderr="Unrecognized filter\n"),
    )
    executor.execute.side_effect = failure if error_cls is CommandFailedError else RetryExhaustedError(failure, 3)

    with pytest.raises(TaskSourceError) as exc_info:
        source.fetch(["bad("])

    assert exc_info.value.error_type is ErrorType.TASKWARRIOR_QUERY
    assert "Unrecognized filter" in exc_info.value.details


def test_cancellation_propagates() -> None:
    """Test that cancellation is not turned into a source error."""
    source, executor = make_source()
    executor.execute.side_effect = ExecutionCancelledError("cancelled", command="task", result=ExecutionResult())

    with pytest.raises(ExecutionCancelledError):
        source.fetch([])


def test_version() -> None:
    """Test reading the Taskwarrior version."""
    source, executor = make_source("3.1.0\n")

    assert source.version() == "3.1.0"
    assert executor.execute.call_args.args[0][-1] == "_version"


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as the task binary")
def test_fetch_with_real_process(tmp_path: Path) -> None:
    """Test a full export through a stand-in task binary."""
    export = tmp_path / "export.json"
    export.write_text(json.dumps(TASKS))
    args_file = tmp_path / "args"
    script = tmp_path / "task"
    script.write_text(f'#!/bin/sh\necho "$@" > "{args_file}"\ncat "{export}"\n')
    script.chmod(script.stat().st_mode | stat.S_IEXEC)

    tasks = TaskwarriorSource(task_bin=str(script)).fetch(["+work"])

    assert tasks == TASKS
    assert args_file.read_text().split() == DEFAULT_ARGS + ["+work", "export"]
