"""Orchestration of a taskopen run: fetch, match, sort, select, execute."""

import shlex
import threading
from collections.abc import Mapping
from typing import Any

import structlog

from taskopen.builtin_commands import BuiltinDispatcher
from taskopen.config import Config
from taskopen.environment import EnvironmentBuilder, expand_variables
from taskopen.errors import ExecutionCancelledError, ExecutionError
from taskopen.executor import Executor, is_interactive_editor
from taskopen.matcher import Matcher
from taskopen.menu import Menu
from taskopen.models import Actionable, ExecutionOptions, ExecutionResult
from taskopen.selector import Selection, SelectionOutcome, Selector
from taskopen.sorter import sort_actionables
from taskopen.source import TaskSource
from taskopen.sources.taskwarrior import TaskwarriorSource

logger = structlog.get_logger()

NORMAL_MODE = "normal"
BATCH_MODE = "batch"


class TaskProcessor:
    """Runs the taskopen pipeline for one invocation."""

    def __init__(
        self,
        config: Config,
        source: TaskSource | None = None,
        executor: Executor | None = None,
        menu: Menu | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the processor.

        Args:
            config: Validated configuration
            source: Task source (defaults to Taskwarrior)
            executor: Executor shared by every spawned process
            menu: Menu used to choose between candidates interactively
            environ: Process environment to snapshot (defaults to os.environ)
        """
        self.config = config
        general = config.general
        self.executor = executor or Executor(
            ExecutionOptions(
                timeout=general.action_timeout,
                sandbox=config.executor.sandbox,
                retry=config.executor.retry,
            )
        )
        self.environment = EnvironmentBuilder(
            editor=general.editor,
            path_ext=general.path_ext,
            task_attributes=general.task_attributes,
            base_environ=environ,
        )
        self.source = source or TaskwarriorSource(
            task_bin=general.taskbin,
            task_args=general.taskargs,
            executor=self.executor,
            timeout=general.filter_timeout,
        )
        self.matcher = Matcher(
            config.actions,
            self.environment,
            executor=self.executor,
            filter_timeout=general.filter_timeout,
        )
        self.selector = Selector(menu=menu, multiple_policy=general.multiple_policy)
        self.builtins = BuiltinDispatcher(self.executor)

    def process_tasks(
        self,
        filters: list[str],
        single: bool = True,
        interactive: bool = True,
        cancel: threading.Event | None = None,
    ) -> Selection:
        """Process the tasks matching the filters.

        Args:
            filters: Taskwarrior filter arguments (empty uses general.base_filter)
            single: Only the first matching action per task attribute value
            interactive: Allow the menu to choose between several candidates
            cancel: Cancellation event for every blocking step

        Returns:
            Selection with the outcome; EXECUTE means the chosen action ran

        Raises:
            TaskopenError: On the first unrecoverable error
        """
        if not filters:
            filters = shlex.split(self.config.general.base_filter)
        mode = NORMAL_MODE if interactive else BATCH_MODE
        logger.info("Processing tasks", filters=filters, single=single, mode=mode)

        tasks = self.source.fetch(filters, cancel=cancel)
        if not tasks:
            logger.info("No tasks found", filters=filters)
            return Selection(SelectionOutcome.NONE)

        candidates = self.matcher.match(tasks, single=single, mode=mode, cancel=cancel)
        candidates = sort_actionables(candidates, self.config.general.sort)
        logger.debug("Candidates sorted", count=len(candidates), sort=self.config.general.sort)

        if not candidates:
            if len(tasks) == 1 and self.config.general.no_annotation_hook:
                self.run_no_match_hook(tasks[0], cancel=cancel)
            return Selection(SelectionOutcome.NONE)

        selection = self.selector.select(candidates, interactive=interactive)
        if selection.outcome is SelectionOutcome.EXECUTE and selection.chosen is not None:
            self.execute(selection.chosen, cancel=cancel)
        return selection

    def expanded_command(self, actionable: Actionable) -> str:
        """Return the action command with the actionable's variables substituted."""
        return expand_variables(actionable.rule.command, actionable.environment)

    def execute(self, actionable: Actionable, cancel: threading.Event | None = None) -> ExecutionResult:
        """Run the command of an actionable.

        Built-in commands are dispatched by name; everything else runs
        through the executor with the actionable's environment and the
        caller's terminal.

        Raises:
            TaskopenError: If the command cannot be run or fails
        """
        rule = actionable.rule
        env = actionable.environment

        if self.builtins.is_builtin(rule.command, env):
            return self.builtins.dispatch(rule.command, env, cancel=cancel)

        command = self.expanded_command(actionable)
        interactive = is_interactive_editor(command)
        logger.info("Executing action", action=rule.name, command=command, interactive=interactive)
        return self.executor.execute(
            command,
            ExecutionOptions(
                environment=env,
                capture_output=False,
                interactive=interactive,
                timeout=self.config.general.action_timeout,
            ),
            cancel=cancel,
        )

    def inline_output(self, actionable: Actionable, cancel: threading.Event | None = None) -> str | None:
        """Run the inline command of an actionable and return its stripped stdout.

        Failures are logged and yield None; cancellation propagates.
        """
        template = actionable.rule.inlinecommand
        if not template:
            return None

        command = expand_variables(template, actionable.environment)
        try:
            result = self.executor.execute(
                command,
                ExecutionOptions(
                    environment=actionable.environment,
                    capture_output=True,
                    interactive=False,
                    timeout=self.config.general.filter_timeout,
                ),
                cancel=cancel,
            )
        except ExecutionCancelledError:
            raise
        except ExecutionError as e:
            logger.warning("Inline command failed", action=actionable.rule.name, command=command, error=e.message)
            return None
        return result.stdout.strip()

    def run_no_match_hook(self, task: Mapping[str, Any], cancel: threading.Event | None = None) -> ExecutionResult:
        """Run general.no_annotation_hook for a task without candidates."""
        env = self.environment.build(task)
        command = expand_variables(self.config.general.no_annotation_hook, env)
        logger.info("Running no-annotation hook", command=command, task=env.get("UUID"))
        return self.executor.execute(
            command,
            ExecutionOptions(
                environment=env,
                capture_output=False,
                interactive=is_interactive_editor(command),
                timeout=self.config.general.action_timeout,
            ),
            cancel=cancel,
        )
