"""Taskwarrior task source using the task CLI."""

import json
import threading
from typing import Any

import structlog

from taskopen.errors import ErrorType, ExecutionCancelledError, ExecutionError, SpawnError, TaskSourceError
from taskopen.executor import Executor
from taskopen.models import ExecutionOptions, RetryPolicy
from taskopen.source import TaskSource

logger = structlog.get_logger()

DEFAULT_ARGS = ["rc.verbose=blank,label,edit", "rc.json.array=on", "rc.gc=off"]
DEFAULT_TIMEOUT = 10.0


class TaskwarriorSource(TaskSource):
    """Task source backed by ``task export``."""

    def __init__(
        self,
        task_bin: str = "task",
        task_args: list[str] | None = None,
        executor: Executor | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize Taskwarrior source.

        Args:
            task_bin: Taskwarrior binary name or path
            task_args: Extra arguments placed before the filters
            executor: Executor used to run the task binary
            timeout: Deadline for each task invocation in seconds
        """
        self.task_bin = task_bin
        self.task_args = DEFAULT_ARGS + list(task_args or [])
        self.executor = executor or Executor()
        self.options = ExecutionOptions(
            timeout=timeout,
            capture_output=True,
            interactive=False,
            retry=RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=2.0, backoff_multiplier=2.0),
        )
        logger.debug("Initializing Taskwarrior source", task_bin=task_bin, task_args=self.task_args)

    def _run_task_command(self, args: list[str], cancel: threading.Event | None = None) -> str:
        """Run a task command and return its stdout.

        Args:
            args: Command arguments (excluding the binary and default args)
            cancel: Cancellation event

        Returns:
            Captured stdout
        """
        cmd = [self.task_bin] + self.task_args + args
        logger.debug("Running task command", cmd=cmd)

        try:
            result = self.executor.execute(cmd, self.options, cancel=cancel)
        except ExecutionCancelledError:
            raise
        except SpawnError as e:
            logger.error("Taskwarrior could not be started", task_bin=self.task_bin, error=e.details)
            raise TaskSourceError(
                "Taskwarrior not found in PATH",
                details=f"The '{self.task_bin}' command is required but not available",
                suggestions=[
                    "Install taskwarrior: sudo apt-get install taskwarrior (Ubuntu/Debian)",
                    "Install taskwarrior: brew install task (macOS)",
                    "Set general.taskbin in the taskopen configuration",
                ],
                error_type=ErrorType.TASKWARRIOR_NOT_FOUND,
            ) from e
        except ExecutionError as e:
            logger.error("task command failed", cmd=cmd, stderr=e.result.stderr, returncode=e.exit_code)
            raise TaskSourceError(
                "Taskwarrior command failed",
                details=f"Exit code: {e.exit_code}, stderr: {e.result.stderr.strip()}",
                suggestions=["Check task filter syntax", "Verify Taskwarrior configuration"],
            ) from e

        return result.stdout

    def fetch(self, filters: list[str], cancel: threading.Event | None = None) -> list[dict[str, Any]]:
        """Export tasks matching the filters."""
        logger.info("Exporting tasks", filters=filters)
        stdout = self._run_task_command(list(filters) + ["export"], cancel=cancel)

        if not stdout.strip():
            return []

        try:
            tasks = json.loads(stdout)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse taskwarrior JSON", stdout=stdout, error=str(e))
            raise TaskSourceError("Failed to parse taskwarrior JSON", details=str(e)) from e

        if not isinstance(tasks, list) or not all(isinstance(task, dict) for task in tasks):
            raise TaskSourceError(
                "Unexpected response from task export",
                details="Expected a JSON array of task objects",
                suggestions=["Make sure rc.json.array is not overridden in taskargs"],
            )

        logger.info("Retrieved tasks from taskwarrior", count=len(tasks))
        return tasks

    def version(self, cancel: threading.Event | None = None) -> str:
        """Return the Taskwarrior version string."""
        return self._run_task_command(["_version"], cancel=cancel).strip()
