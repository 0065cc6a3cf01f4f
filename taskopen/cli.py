"""CLI for taskopen."""

import platform
import signal
import sys
import threading
from typing import Annotated, Literal

import structlog
from cyclopts import App, Parameter

from taskopen import __version__
from taskopen.config import find_config_path, load_config
from taskopen.config_commands import config_app
from taskopen.errors import TaskopenError
from taskopen.menu import NumberedMenu, describe
from taskopen.processor import TaskProcessor
from taskopen.sandbox import sandbox_support
from taskopen.selector import SelectionOutcome

logger = structlog.get_logger()

app = App(
    help="taskopen - run actions attached to Taskwarrior tasks",
)

app.command(config_app)


def configure_logging(log_level: str) -> None:
    """Configure structlog with the specified log level."""
    structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(min_level=log_level.lower()))


def fail(error: TaskopenError) -> None:
    """Print a taskopen error to stderr and exit with status 1."""
    print(f"Error: {error}", file=sys.stderr)
    sys.exit(1)


@app.default
def run(
    *filters: str,
    multiple: Annotated[bool, Parameter(name=["--multiple", "-m"])] = False,
    batch: bool = False,
) -> None:
    """Find actions for the tasks matching FILTERS and run one.

    Args:
        filters: Taskwarrior filter (defaults to general.base_filter)
        multiple: Offer every matching action instead of the first per annotation
        batch: Never prompt; list the candidates when more than one matches
    """
    cancel = threading.Event()

    def handle_interrupt(signum, frame) -> None:
        logger.info("Interrupt received, cancelling")
        cancel.set()

    previous = signal.signal(signal.SIGINT, handle_interrupt)
    try:
        config = load_config()
        if config.general.debug:
            configure_logging("debug")

        interactive = not batch and sys.stdin.isatty()
        processor = TaskProcessor(config, menu=NumberedMenu() if interactive else None)
        selection = processor.process_tasks(list(filters), single=not multiple, interactive=interactive, cancel=cancel)

        if selection.outcome is SelectionOutcome.NONE:
            print("No actionable items found")
        elif selection.outcome is SelectionOutcome.LIST:
            print(f"Found {len(selection.candidates)} action(s):\n")
            for index, candidate in enumerate(selection.candidates, 1):
                print(f"{index:>3}) {describe(candidate)}")
                print(f"       Command: {processor.expanded_command(candidate)}")
                inline = processor.inline_output(candidate, cancel=cancel)
                if inline:
                    for line in inline.splitlines():
                        print(f"       {line}")
    except TaskopenError as e:
        fail(e)
    finally:
        signal.signal(signal.SIGINT, previous)


@app.command
def version() -> None:
    """Show the taskopen version."""
    print(f"taskopen {__version__}")


@app.command
def diagnostics() -> None:
    """Check the configuration, Taskwarrior and sandbox support."""
    print(f"taskopen {__version__} (Python {platform.python_version()}, {sys.platform})\n")

    config_path = find_config_path()
    print(f"Configuration: {config_path}")
    try:
        config = load_config(config_path)
    except TaskopenError as e:
        print(f"  ✗ {e.message}")
        if e.details:
            print(f"    {e.details}")
        return

    processor = TaskProcessor(config)
    invalid = processor.matcher.invalid_rules
    print(f"  ✓ {len(config.actions)} action(s), {len(invalid)} invalid")
    for rule in invalid:
        print(f"    ✗ {rule.rule.name}: {rule.reason}")

    print(f"\nTaskwarrior: {config.general.taskbin}")
    try:
        print(f"  ✓ version {processor.source.version()}")
    except TaskopenError as e:
        print(f"  ✗ {e.message}")

    print("\nSandbox support:")
    for setting, supported in sandbox_support().items():
        print(f"  {'✓' if supported else '✗'} {setting}")


@app.meta.default
def main(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "warning",
) -> None:
    """Main entry point with global options."""
    configure_logging(log_level)
    app(tokens)


if __name__ == "__main__":
    app.meta()
