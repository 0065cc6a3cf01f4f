"""Configuration commands for taskopen CLI."""

import sys

import yaml
from cyclopts import App

from taskopen.config import config_to_dict, default_config, find_config_path, load_config, save_config
from taskopen.errors import TaskopenError

config_app = App(name="config", help="Manage configuration")


@config_app.command
def init(force: bool = False) -> None:
    """Write a configuration file with the default actions.

    Args:
        force: Overwrite an existing configuration file
    """
    path = find_config_path()
    if path.exists() and not force:
        print(f"Configuration already exists at {path} (use --force to overwrite)", file=sys.stderr)
        sys.exit(1)

    try:
        save_config(default_config(), path)
    except TaskopenError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Created configuration at {path}")


@config_app.command
def validate() -> None:
    """Validate the configuration file."""
    try:
        config = load_config()
    except TaskopenError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Configuration is valid ({len(config.actions)} action(s))")


@config_app.command
def path() -> None:
    """Print the configuration file location."""
    print(find_config_path())


@config_app.command
def show() -> None:
    """Print the effective configuration as YAML."""
    try:
        config = load_config()
    except TaskopenError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(yaml.safe_dump(config_to_dict(config), default_flow_style=False, sort_keys=False), end="")
