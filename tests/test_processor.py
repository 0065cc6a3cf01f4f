"""Tests for the task processor."""

from unittest.mock import MagicMock

import pytest

from taskopen.config import Config, GeneralConfig
from taskopen.errors import CommandFailedError, ExecutionCancelledError
from taskopen.models import ActionRule, ExecutionResult
from taskopen.processor import TaskProcessor
from taskopen.selector import SelectionOutcome

ENVIRON = {"HOME": "/home/alice", "PATH": "/usr/bin"}

OPEN_FILES = ActionRule(name="files", regex=r"^[\.\/~]+.*\.(.*)", command="xdg-open $FILE")


def make_processor(
    actions: list[ActionRule],
    tasks: list[dict],
    menu: MagicMock | None = None,
    **general,
) -> tuple[TaskProcessor, MagicMock, MagicMock]:
    source = MagicMock()
    source.fetch.return_value = tasks
    executor = MagicMock()
    executor.execute.return_value = ExecutionResult(exit_code=0)
    config = Config(general=GeneralConfig(editor="vim", **general), actions=actions)
    processor = TaskProcessor(config, source=source, executor=executor, menu=menu, environ=ENVIRON)
    return processor, source, executor


def task(uuid: str, *annotations: str, **attributes) -> dict:
    data = {"uuid": uuid, "description": f"task {uuid}", "urgency": 1.0}
    data.update(attributes)
    if annotations:
        data["annotations"] = [{"entry": "20240101T000000Z", "description": text} for text in annotations]
    return data


def test_default_filter() -> None:
    """Test that base_filter is used when no filters are given."""
    processor, source, _ = make_processor([OPEN_FILES], [], base_filter="+PENDING +work")

    selection = processor.process_tasks([])

    assert selection.outcome is SelectionOutcome.NONE
    source.fetch.assert_called_once_with(["+PENDING", "+work"], cancel=None)


def test_single_candidate_is_executed() -> None:
    """Test that a single match is executed with its environment."""
    processor, source, executor = make_processor([OPEN_FILES], [task("abc", "~/docs/report.pdf")])

    selection = processor.process_tasks(["+work"], interactive=False)

    assert selection.outcome is SelectionOutcome.EXECUTE
    source.fetch.assert_called_once_with(["+work"], cancel=None)
    command, options = executor.execute.call_args.args
    assert command == "xdg-open /home/alice/docs/report.pdf"
    assert options.environment["UUID"] == "abc"
    assert options.capture_output is False
    assert options.interactive is False
    assert options.timeout == 30.0


def test_editor_command_runs_interactively() -> None:
    """Test that editor actions are executed without a deadline."""
    rule = ActionRule(name="edit", target="description", regex="EDIT", command="$EDITOR /tmp/$UUID.txt")
    processor, _, executor = make_processor([rule], [task("abc", description="EDIT this")])

    processor.process_tasks(["abc"])

    command, options = executor.execute.call_args.args
    assert command == "vim /tmp/abc.txt"
    assert options.interactive is True


def test_builtin_command_dispatched() -> None:
    """Test that built-in commands bypass the executor."""
    rule = ActionRule(name="notes", regex=".*", command='editnote ~/n/$UUID.md "$TASK_DESCRIPTION" $UUID')
    processor, _, executor = make_processor([rule], [task("abc", "notes")])
    processor.builtins.dispatch = MagicMock(return_value=ExecutionResult())

    processor.process_tasks(["abc"])

    processor.builtins.dispatch.assert_called_once()
    assert processor.builtins.dispatch.call_args.args[0] == rule.command
    executor.execute.assert_not_called()


def test_multiple_candidates_listed_in_batch() -> None:
    """Test that non-interactive runs list several candidates in sorted order."""
    tasks = [task("a", "./b.txt", urgency=2.0), task("b", "./a.txt", urgency=2.0), task("c", "./c.txt", urgency=9.0)]
    processor, _, executor = make_processor([OPEN_FILES], tasks)

    selection = processor.process_tasks(["+work"], interactive=False)

    assert selection.outcome is SelectionOutcome.LIST
    assert [c.text for c in selection.candidates] == ["./c.txt", "./a.txt", "./b.txt"]
    executor.execute.assert_not_called()


def test_menu_choice_executed() -> None:
    """Test that the menu choice is executed in interactive runs."""
    menu = MagicMock()
    menu.choose.side_effect = lambda candidates: candidates[1]
    processor, _, executor = make_processor([OPEN_FILES], [task("a", "./a.txt", "./b.txt")], menu=menu)

    selection = processor.process_tasks(["a"], interactive=True)

    assert selection.outcome is SelectionOutcome.EXECUTE
    assert selection.chosen.text == "./b.txt"
    assert executor.execute.call_args.args[0] == "xdg-open ./b.txt"


def test_batch_mode_filters_rules() -> None:
    """Test that the run mode follows interactivity."""
    rule = ActionRule(name="files", regex=".*", command="xdg-open $FILE", modes=("normal",))
    processor, _, _ = make_processor([rule], [task("a", "./a.txt")])

    assert processor.process_tasks(["a"], interactive=False).outcome is SelectionOutcome.NONE
    assert processor.process_tasks(["a"], interactive=True).outcome is SelectionOutcome.EXECUTE


def test_no_match_hook_runs_for_single_task() -> None:
    """Test the hook for a single task without candidates."""
    processor, _, executor = make_processor([OPEN_FILES], [task("abc")], no_annotation_hook="addnote $UUID")

    selection = processor.process_tasks(["abc"])

    assert selection.outcome is SelectionOutcome.NONE
    command, options = executor.execute.call_args.args
    assert command == "addnote abc"
    assert options.environment["UUID"] == "abc"


def test_no_match_hook_skipped_for_several_tasks() -> None:
    """Test that the hook only runs when exactly one task was fetched."""
    processor, _, executor = make_processor([OPEN_FILES], [task("a"), task("b")], no_annotation_hook="addnote $UUID")

    processor.process_tasks(["+work"])

    executor.execute.assert_not_called()


def test_execution_errors_propagate() -> None:
    """Test that a failing action is raised to the caller."""
    processor, _, executor = make_processor([OPEN_FILES], [task("abc", "./a.txt")])
    executor.execute.side_effect = CommandFailedError("failed", command="xdg-open", result=ExecutionResult(exit_code=4))

    with pytest.raises(CommandFailedError):
        processor.process_tasks(["abc"])


def test_inline_output() -> None:
    """Test inline command output for listed candidates."""
    rule = ActionRule(name="files", regex=".*", command="xdg-open $FILE", inlinecommand="wc -l $FILE")
    processor, _, executor = make_processor([rule], [task("a", "./a.txt")])
    candidate = processor.matcher.match([task("a", "./a.txt")])[0]
    executor.execute.return_value = ExecutionResult(stdout="  3 ./a.txt\n")

    assert processor.inline_output(candidate) == "3 ./a.txt"
    command, options = executor.execute.call_args.args
    assert command == "wc -l ./a.txt"
    assert options.capture_output is True

    executor.execute.side_effect = CommandFailedError("failed", command="wc", result=ExecutionResult(exit_code=1))
    assert processor.inline_output(candidate) is None

    executor.execute.side_effect = ExecutionCancelledError("cancelled", command="wc", result=ExecutionResult())
    with pytest.raises(ExecutionCancelledError):
        processor.inline_output(candidate)


def test_inline_output_without_command() -> None:
    """Test that candidates without an inline command produce nothing."""
    processor, _, executor = make_processor([OPEN_FILES], [])
    candidate = processor.matcher.match([task("a", "./a.txt")])[0]

    assert processor.inline_output(candidate) is None
    executor.execute.assert_not_called()


def test_expanded_command() -> None:
    """Test that the listed command matches the one that would be executed."""
    processor, _, executor = make_processor([OPEN_FILES], [task("a", "~/docs/a.txt")])
    candidate = processor.matcher.match([task("a", "~/docs/a.txt")])[0]

    assert processor.expanded_command(candidate) == "xdg-open /home/alice/docs/a.txt"
    executor.execute.assert_not_called()

    processor.execute(candidate)
    assert executor.execute.call_args.args[0] == processor.expanded_command(candidate)
