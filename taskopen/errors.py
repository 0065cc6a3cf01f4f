"""Structured errors for taskopen."""

from enum import Enum

from taskopen.models import ExecutionResult


class ErrorType(str, Enum):
    CONFIG_NOT_FOUND = "config_not_found"
    CONFIG_INVALID = "config_invalid"
    TASKWARRIOR_NOT_FOUND = "taskwarrior_not_found"
    TASKWARRIOR_QUERY = "taskwarrior_query"
    ACTION_INVALID = "action_invalid"
    ACTION_EXECUTION = "action_execution"
    SANDBOX = "sandbox"
    VALIDATION_FAILED = "validation_failed"
    INTERNAL_ERROR = "internal_error"


class TaskopenError(Exception):
    """Base error carrying a category, details and suggestions for the user."""

    error_type = ErrorType.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: str = "",
        suggestions: list[str] | None = None,
        error_type: ErrorType | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        self.suggestions = list(suggestions or [])
        if error_type is not None:
            self.error_type = error_type

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.suggestions:
            parts.append("Suggestions:\n  • " + "\n  • ".join(self.suggestions))
        return "\n\n".join(parts)


class ConfigError(TaskopenError):
    error_type = ErrorType.CONFIG_INVALID


class TaskSourceError(TaskopenError):
    error_type = ErrorType.TASKWARRIOR_QUERY


class ExecutionError(TaskopenError):
    """A failed process execution.

    Every execution error keeps the command, its exit code and the full
    ExecutionResult so callers can report stdout/stderr and timing.
    """

    error_type = ErrorType.ACTION_EXECUTION

    def __init__(
        self,
        message: str,
        command: str,
        result: ExecutionResult,
        details: str = "",
        suggestions: list[str] | None = None,
    ) -> None:
        super().__init__(message, details=details, suggestions=suggestions)
        self.command = command
        self.result = result

    @property
    def exit_code(self) -> int:
        return self.result.exit_code


class SpawnError(ExecutionError):
    """The process could not be started (missing binary, permissions)."""


class CommandFailedError(ExecutionError):
    """The process exited with a non-zero status."""


class CommandTimeoutError(ExecutionError):
    """The process was killed after its deadline passed."""


class ExecutionCancelledError(ExecutionError):
    """Execution was aborted through the cancellation event."""


class RetryExhaustedError(ExecutionError):
    """All retry attempts failed; ``last_error`` is the final attempt's failure."""

    def __init__(self, last_error: ExecutionError, attempts: int) -> None:
        super().__init__(
            f"Command failed after {attempts} attempts",
            command=last_error.command,
            result=last_error.result,
            details=last_error.message,
            suggestions=last_error.suggestions,
        )
        self.last_error = last_error
        self.attempts = attempts


class SandboxError(TaskopenError):
    """A sandbox policy refused to run a command.

    The executor attaches the ExecutionResult of the refused command
    before re-raising; ``result`` is None outside the executor.
    """

    error_type = ErrorType.SANDBOX

    def __init__(
        self,
        message: str,
        details: str = "",
        suggestions: list[str] | None = None,
        result: ExecutionResult | None = None,
    ) -> None:
        super().__init__(message, details=details, suggestions=suggestions)
        self.result = result


class SandboxUnsupportedError(SandboxError):
    """A declared sandbox setting cannot be enforced under strict mode."""


class SandboxViolationError(SandboxError):
    """The working directory is outside every allowed path."""


class BuiltinCommandError(TaskopenError):
    error_type = ErrorType.ACTION_EXECUTION


class AmbiguousSelectionError(TaskopenError):
    error_type = ErrorType.ACTION_INVALID
