"""Process execution with timeout, retry and sandbox handling."""

import os
import re
import shlex
import signal
import subprocess
import threading
import time
from collections.abc import Sequence
from dataclasses import fields, replace
from pathlib import Path

import structlog

from taskopen.errors import (
    CommandFailedError,
    CommandTimeoutError,
    ExecutionCancelledError,
    ExecutionError,
    RetryExhaustedError,
    SandboxError,
    SpawnError,
)
from taskopen.models import ExecutionOptions, ExecutionResult, RetryPolicy, SandboxPolicy
from taskopen.sandbox import prepare_sandbox

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30.0
DEFAULT_SHELL = "sh"
TIMEOUT_EXIT_CODE = 124
SPAWN_FAILURE_EXIT_CODE = 127
POLL_INTERVAL = 0.05
TERMINATE_GRACE = 2.0

_SHELL_FEATURES = ("|", "&", ";", ">", "<", "$(", "`", "*", "?", "[")
_ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")

INTERACTIVE_EDITORS = frozenset(
    {
        "vim", "nvim", "vi", "nano", "emacs", "pico", "joe", "micro",
        "code", "subl", "atom", "gedit", "kate", "mousepad", "leafpad",
        "ne", "mg", "zile", "jed", "mcedit", "tilde", "kakoune", "kak",
        "helix", "hx", "ed",
    }
)  # fmt: skip


def needs_shell(command: str) -> bool:
    """Whether a command uses shell syntax and must run through ``sh -c``.

    Pipes, control operators, redirections, command substitution, glob
    characters and a leading ``VAR=value`` assignment all need a shell.
    """
    if any(feature in command for feature in _SHELL_FEATURES):
        return True
    parts = command.split()
    return bool(parts) and bool(_ASSIGNMENT.match(parts[0]))


def is_interactive_editor(command: str) -> bool:
    """Whether the program of a command is a known interactive editor."""
    parts = command.strip().split()
    if not parts:
        return False
    executable = Path(parts[0]).name.lower().lstrip(".")
    if executable.endswith(".exe"):
        executable = executable[: -len(".exe")]
    return executable in INTERACTIVE_EDITORS


def _normalize_retry(retry: RetryPolicy) -> RetryPolicy:
    return replace(
        retry,
        max_attempts=max(1, retry.max_attempts),
        base_delay=max(0.0, retry.base_delay),
        max_delay=max(0.0, retry.max_delay),
    )


def should_retry(result: ExecutionResult, retry: RetryPolicy) -> bool:
    """Decide whether a failed attempt is eligible for another try.

    A timed-out attempt is only retried when the timeout exit code is listed
    explicitly. Otherwise an empty allow-list retries every non-zero exit.
    """
    if result.timed_out:
        return TIMEOUT_EXIT_CODE in retry.retry_on_exit_codes
    if retry.retry_on_exit_codes:
        return result.exit_code in retry.retry_on_exit_codes
    return True


class Executor:
    """Runs commands under timeout, retry and sandbox policies."""

    def __init__(self, defaults: ExecutionOptions | None = None) -> None:
        """Initialize the executor.

        Args:
            defaults: Options applied to every call unless overridden per call
        """
        defaults = defaults or ExecutionOptions()
        self.defaults = ExecutionOptions(
            timeout=defaults.timeout or DEFAULT_TIMEOUT,
            environment=defaults.environment,
            working_dir=defaults.working_dir,
            capture_output=bool(defaults.capture_output),
            interactive=bool(defaults.interactive),
            sandbox=defaults.sandbox or SandboxPolicy(),
            retry=_normalize_retry(defaults.retry or RetryPolicy()),
        )
        logger.debug("Executor initialized", timeout=self.defaults.timeout, retry=self.defaults.retry)

    def merge_options(self, options: ExecutionOptions | None) -> ExecutionOptions:
        """Overlay per-call options on the executor defaults."""
        if options is None:
            return replace(self.defaults)
        merged = {}
        for option in fields(ExecutionOptions):
            value = getattr(options, option.name)
            merged[option.name] = value if value is not None else getattr(self.defaults, option.name)
        result = ExecutionOptions(**merged)
        result.retry = _normalize_retry(result.retry)
        return result

    def build_argv(self, command: str) -> list[str]:
        """Turn a command string into an argv, wrapping it in a shell when needed.

        Raises:
            SpawnError: If the command is empty or cannot be tokenized
        """
        if needs_shell(command):
            return [DEFAULT_SHELL, "-c", command]
        try:
            argv = shlex.split(command)
        except ValueError as e:
            raise SpawnError(
                "Malformed command",
                command=command,
                result=ExecutionResult(exit_code=SPAWN_FAILURE_EXIT_CODE, stderr=str(e), command=command),
                details=str(e),
                suggestions=["Check the quoting in the action command"],
            ) from e
        if not argv:
            raise SpawnError(
                "Empty command",
                command=command,
                result=ExecutionResult(exit_code=SPAWN_FAILURE_EXIT_CODE, command=command),
            )
        return argv

    def execute(
        self,
        command: str | Sequence[str],
        options: ExecutionOptions | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run a command and return its result.

        A string is run through ``sh -c`` when it uses shell syntax and
        executed directly otherwise; a sequence is always executed directly.

        Args:
            command: Command string or argv
            options: Per-call options merged over the defaults
            cancel: Event that aborts the run (and any backoff wait) when set

        Returns:
            ExecutionResult of the successful attempt

        Raises:
            ExecutionError: On spawn failure, non-zero exit, timeout, cancellation
                or exhausted retries; the exception carries the last result
            SandboxError: If the sandbox policy refuses the command; its result
                is attached as well
        """
        if isinstance(command, str):
            display = command
            argv = self.build_argv(command)
        else:
            argv = list(command)
            display = shlex.join(argv)
            if not argv:
                raise SpawnError(
                    "Empty command",
                    command=display,
                    result=ExecutionResult(exit_code=SPAWN_FAILURE_EXIT_CODE, command=display),
                )

        opts = self.merge_options(options)
        logger.debug(
            "Executing command",
            command=display,
            shell=argv[0] == DEFAULT_SHELL and argv[1:2] == ["-c"],
            interactive=opts.interactive,
            capture=opts.capture_output,
        )
        return self._execute_with_retry(argv, display, opts, cancel)

    def execute_filter(
        self,
        command: str,
        environment: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Run a filter command and report whether it exited with 0.

        Cancellation is not a filter verdict and propagates.
        """
        try:
            self.execute(
                command,
                ExecutionOptions(
                    environment=environment,
                    timeout=timeout,
                    capture_output=True,
                    interactive=False,
                    retry=RetryPolicy(max_attempts=1),
                ),
                cancel=cancel,
            )
        except ExecutionCancelledError:
            raise
        except ExecutionError as e:
            logger.debug("Filter command rejected", command=command, exit_code=e.exit_code, error=e.message)
            return False
        return True

    def _execute_with_retry(
        self,
        argv: list[str],
        display: str,
        opts: ExecutionOptions,
        cancel: threading.Event | None,
    ) -> ExecutionResult:
        retry = opts.retry
        delay = retry.base_delay
        last_error: ExecutionError | None = None
        attempts_made = 0

        for attempt in range(retry.max_attempts):
            if attempt > 0:
                logger.info("Retrying command", command=display, attempt=attempt + 1, delay=delay)
                if cancel is not None:
                    if cancel.wait(delay):
                        raise ExecutionCancelledError(
                            "Command execution cancelled",
                            command=display,
                            result=last_error.result if last_error else ExecutionResult(command=display),
                        )
                else:
                    time.sleep(delay)
                delay = min(delay * retry.backoff_multiplier, retry.max_delay)

            if cancel is not None and cancel.is_set():
                raise ExecutionCancelledError(
                    "Command execution cancelled",
                    command=display,
                    result=last_error.result if last_error else ExecutionResult(command=display),
                )

            attempts_made = attempt + 1
            try:
                result = self._run_once(argv, display, opts, cancel)
            except SpawnError as e:
                e.result.retry_attempts = attempt
                last_error = e
                if not retry.retry_on_spawn_error:
                    raise
                continue

            result.retry_attempts = attempt
            if result.ok:
                return result

            last_error = self._failure(display, result, opts)
            if not should_retry(result, retry):
                logger.debug("Failure not eligible for retry", command=display, exit_code=result.exit_code)
                break
        else:
            # Every attempt failed in a retryable way.
            assert last_error is not None
            if retry.max_attempts > 1:
                logger.warning("Command failed after retries", command=display, attempts=attempts_made)
                raise RetryExhaustedError(last_error, attempts_made) from last_error

        assert last_error is not None
        raise last_error

    def _failure(self, display: str, result: ExecutionResult, opts: ExecutionOptions) -> ExecutionError:
        if result.timed_out:
            return CommandTimeoutError(
                f"Command timed out after {opts.timeout}s",
                command=display,
                result=result,
                suggestions=["Increase the timeout or run the command interactively"],
            )
        return CommandFailedError(
            f"Command exited with code {result.exit_code}",
            command=display,
            result=result,
            details=result.stderr.strip(),
        )

    def _run_once(
        self,
        argv: list[str],
        display: str,
        opts: ExecutionOptions,
        cancel: threading.Event | None,
    ) -> ExecutionResult:
        try:
            plan = prepare_sandbox(opts.sandbox, opts.working_dir)
        except SandboxError as e:
            e.result = ExecutionResult(exit_code=SPAWN_FAILURE_EXIT_CODE, stderr=e.message, command=display)
            logger.error("Sandbox refused command", command=display, error=e.message)
            raise
        for warning in plan.warnings:
            logger.warning("Sandbox setting not enforced", command=display, warning=warning)

        capture = bool(opts.capture_output)
        stream = subprocess.PIPE if capture else None
        # Only interactive commands stay in the terminal's foreground group.
        new_session = os.name == "posix" and (capture or not opts.interactive)

        start = time.monotonic()
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                cwd=opts.working_dir,
                env=opts.environment,
                stdin=subprocess.DEVNULL if capture else None,
                stdout=stream,
                stderr=stream,
                text=True,
                preexec_fn=plan.preexec_fn,
                start_new_session=new_session,
                **plan.popen_kwargs,
            )
        except OSError as e:
            result = ExecutionResult(
                exit_code=SPAWN_FAILURE_EXIT_CODE,
                stderr=str(e),
                duration=time.monotonic() - start,
                command=display,
                sandbox_warnings=list(plan.warnings),
            )
            logger.error("Failed to start command", command=display, error=str(e))
            raise SpawnError(
                f"Failed to start command: {argv[0]}",
                command=display,
                result=result,
                details=str(e),
                suggestions=["Check that the program is installed and in PATH"],
            ) from e

        deadline = None if opts.interactive else start + opts.timeout
        while True:
            try:
                if capture:
                    stdout, stderr = process.communicate(timeout=POLL_INTERVAL)
                else:
                    process.wait(timeout=POLL_INTERVAL)
                    stdout, stderr = "", ""
                break
            except subprocess.TimeoutExpired:
                pass

            if cancel is not None and cancel.is_set():
                stdout, stderr = self._terminate(process, new_session)
                result = ExecutionResult(
                    exit_code=process.returncode,
                    stdout=stdout or "",
                    stderr=stderr or "",
                    duration=time.monotonic() - start,
                    command=display,
                    sandbox_warnings=list(plan.warnings),
                )
                logger.info("Command cancelled", command=display)
                raise ExecutionCancelledError("Command execution cancelled", command=display, result=result)

            if deadline is not None and time.monotonic() >= deadline:
                stdout, stderr = self._terminate(process, new_session)
                logger.warning("Command timed out", command=display, timeout=opts.timeout)
                return ExecutionResult(
                    exit_code=TIMEOUT_EXIT_CODE,
                    stdout=stdout or "",
                    stderr=stderr or "",
                    duration=time.monotonic() - start,
                    timed_out=True,
                    command=display,
                    sandbox_warnings=list(plan.warnings),
                )

        result = ExecutionResult(
            exit_code=process.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration=time.monotonic() - start,
            command=display,
            sandbox_warnings=list(plan.warnings),
        )
        logger.debug("Command finished", command=display, exit_code=result.exit_code, duration=result.duration)
        return result

    def _terminate(self, process: subprocess.Popen[str], group: bool) -> tuple[str | None, str | None]:
        self._send(process, signal.SIGTERM, group)
        try:
            return process.communicate(timeout=TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            self._send(process, signal.SIGKILL if os.name == "posix" else signal.SIGTERM, group)
            return process.communicate()

    def _send(self, process: subprocess.Popen[str], sig: int, group: bool) -> None:
        if process.poll() is not None and not group:
            return
        try:
            if group:
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            logger.debug("Process already exited", pid=process.pid)
