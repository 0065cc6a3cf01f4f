"""Built-in commands handled by taskopen itself instead of a subprocess."""

import os
import shlex
import threading
from collections.abc import Callable, Mapping
from pathlib import Path

import structlog

from taskopen.environment import expand_home, expand_variables
from taskopen.errors import BuiltinCommandError, ExecutionCancelledError, ExecutionError, SpawnError
from taskopen.executor import Executor
from taskopen.models import ExecutionOptions, ExecutionResult

logger = structlog.get_logger()

DEFAULT_EDITOR = "vim"

BuiltinHandler = Callable[[list[str], dict[str, str], threading.Event | None], ExecutionResult]


def split_command(command: str) -> list[str]:
    """Tokenize a command with shell quoting rules.

    Raises:
        BuiltinCommandError: If the quoting is unbalanced
    """
    try:
        return shlex.split(command)
    except ValueError as e:
        raise BuiltinCommandError("Failed to parse command", details=f"{command}: {e}") from e


class BuiltinDispatcher:
    """Registry of built-in command names and their handlers."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor
        self._handlers: dict[str, BuiltinHandler] = {"editnote": self.edit_note}

    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    def register(self, name: str, handler: BuiltinHandler) -> None:
        """Register (or replace) the handler for a built-in name."""
        logger.debug("Registering builtin command", name=name)
        self._handlers[name] = handler

    def command_name(self, command: str, env: Mapping[str, str] | None = None) -> str | None:
        parts = command.split(maxsplit=1)
        if not parts:
            return None
        return expand_variables(parts[0], env or {})

    def is_builtin(self, command: str, env: Mapping[str, str] | None = None) -> bool:
        """Whether the first token of the command names a built-in."""
        return self.command_name(command, env) in self._handlers

    def dispatch(
        self,
        command: str,
        env: dict[str, str],
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        """Run a built-in command.

        The command is tokenized before expansion so values containing
        spaces or quotes stay a single argument.

        Args:
            command: Unexpanded command template from the action
            env: Environment of the actionable
            cancel: Cancellation event for any process the builtin starts

        Returns:
            ExecutionResult of the builtin

        Raises:
            BuiltinCommandError: If the command is unknown or fails
        """
        args = [expand_variables(arg, env) for arg in split_command(command)]
        if not args:
            raise BuiltinCommandError("Empty command")

        name, arguments = args[0], args[1:]
        handler = self._handlers.get(name)
        if handler is None:
            raise BuiltinCommandError(f"Unknown built-in command: {name}")

        logger.info("Running builtin command", name=name, args=arguments)
        return handler(arguments, env, cancel)

    def edit_note(
        self,
        args: list[str],
        env: dict[str, str],
        cancel: threading.Event | None = None,
    ) -> ExecutionResult:
        """Open (creating if needed) a note file for a task in the editor.

        Usage: ``editnote <file-path> <description> <uuid>``
        """
        if len(args) != 3:
            raise BuiltinCommandError(
                "editnote requires exactly 3 arguments: <file-path> <description> <uuid>",
                details=f"Got {len(args)}: {args}",
            )

        file_path, description, uuid = args
        path = Path(expand_home(file_path, env))
        logger.debug("editnote", file_path=str(path), description=description, uuid=uuid)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BuiltinCommandError(
                "Failed to create note directory",
                details=f"Directory: {path.parent}: {e}",
                suggestions=["Check file permissions"],
            ) from e

        if not path.exists():
            try:
                path.write_text(f"* [ ] {description}  #{uuid}\n")
            except OSError as e:
                raise BuiltinCommandError(
                    "Failed to create note file",
                    details=f"File: {path}: {e}",
                    suggestions=["Check file permissions and disk space"],
                ) from e
            logger.info("Created new note", file=str(path))
        else:
            logger.debug("Note file already exists", file=str(path))

        editor = env.get("EDITOR") or os.environ.get("EDITOR") or DEFAULT_EDITOR
        argv = shlex.split(editor) + [str(path)]

        try:
            return self.executor.execute(
                argv,
                ExecutionOptions(environment=env, interactive=True, capture_output=False),
                cancel=cancel,
            )
        except ExecutionCancelledError:
            raise
        except ExecutionError as e:
            raise BuiltinCommandError(
                "Failed to open editor" if isinstance(e, SpawnError) else f"Editor exited with code {e.exit_code}",
                details=f"Editor: {editor}, File: {path}",
                suggestions=[
                    "Check that the editor is installed and in PATH",
                    "Verify the editor setting in the taskopen configuration",
                ],
            ) from e
