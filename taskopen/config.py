"""Configuration management for taskopen using YAML files."""

import os
import re
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, get_args, get_origin

import structlog
import yaml

from taskopen.errors import ConfigError, ErrorType
from taskopen.models import (
    ANNOTATIONS_TARGET,
    DESCRIPTION_TARGET,
    ActionRule,
    InvalidRule,
    RetryPolicy,
    SandboxPolicy,
    compile_rule,
)
from taskopen.selector import MultiplePolicy

logger = structlog.get_logger()

CONFIG_VERSION = "2.0"
VALID_TARGETS = (ANNOTATIONS_TARGET, DESCRIPTION_TARGET)
VALID_MODES = ("batch", "any", "normal")
ACTION_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*$")

NUMBER = (int, float)

GENERAL_TYPES = {
    "editor": str,
    "taskbin": str,
    "taskargs": list[str],
    "path_ext": str,
    "task_attributes": str,
    "no_annotation_hook": str,
    "sort": str,
    "base_filter": str,
    "multiple_policy": str,
    "action_timeout": NUMBER,
    "filter_timeout": NUMBER,
    "debug": bool,
}
RETRY_TYPES = {
    "max_attempts": int,
    "base_delay": NUMBER,
    "max_delay": NUMBER,
    "backoff_multiplier": NUMBER,
    "retry_on_exit_codes": list[int],
    "retry_on_spawn_error": bool,
}
SANDBOX_TYPES = {
    "max_memory_mb": int,
    "disable_network": bool,
    "allowed_paths": list[str],
    "drop_privileges": bool,
    "strict": bool,
}
ACTION_TYPES = {
    "name": str,
    "command": str,
    "target": str,
    "regex": str,
    "labelregex": str,
    "modes": tuple[str, ...],
    "filtercommand": str,
    "inlinecommand": str,
}


@dataclass
class GeneralConfig:
    editor: str = field(default_factory=lambda: os.environ.get("EDITOR") or "vim")
    taskbin: str = "task"
    taskargs: list[str] = field(default_factory=list)
    path_ext: str = ""
    task_attributes: str = "priority,project,tags,description"
    no_annotation_hook: str = ""
    sort: str = "urgency-,annot"
    base_filter: str = "+PENDING"
    multiple_policy: str = MultiplePolicy.LIST.value
    action_timeout: float = 30.0
    filter_timeout: float = 10.0
    debug: bool = False


@dataclass
class ExecutorConfig:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    sandbox: SandboxPolicy = field(default_factory=SandboxPolicy)


@dataclass
class Config:
    general: GeneralConfig = field(default_factory=GeneralConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    actions: list[ActionRule] = field(default_factory=list)
    config_version: str = CONFIG_VERSION
    path: Path | None = None

    def get_action(self, name: str) -> ActionRule | None:
        for action in self.actions:
            if action.name == name:
                return action
        return None


def open_command() -> str:
    """Return the platform command that opens files and URLs."""
    if command := os.environ.get("TASKOPEN_OPEN_CMD"):
        return command
    if sys.platform == "darwin":
        return "open"
    if sys.platform == "win32":
        return "start"
    return "xdg-open"


def default_actions() -> list[ActionRule]:
    opener = open_command()
    modes = ("batch", "any", "normal")
    return [
        ActionRule(
            name="files",
            target=ANNOTATIONS_TARGET,
            regex=r"^[\.\/~]+.*\.(.*)",
            labelregex=".*",
            command=f"{opener} $FILE",
            modes=modes,
        ),
        ActionRule(
            name="notes",
            target=ANNOTATIONS_TARGET,
            regex=r".*\.([a-zA-Z0-9]+)$",
            labelregex=".*",
            command='editnote ~/Notes/tasknotes/$UUID$LAST_MATCH "$TASK_DESCRIPTION" $UUID',
            modes=modes,
        ),
        ActionRule(
            name="url",
            target=ANNOTATIONS_TARGET,
            regex=r"((?:www|http).*)",
            labelregex=".*",
            command=f"{opener} $LAST_MATCH",
            modes=modes,
        ),
    ]


def default_config() -> Config:
    """Configuration with the stock actions."""
    return Config(actions=default_actions())


def find_config_path() -> Path:
    """Locate the configuration file.

    Priority:
      1. $TASKOPENRC
      2. $XDG_CONFIG_HOME/taskopen/config.yml
      3. ~/.config/taskopen/config.yml

    The preferred path is returned even when it does not exist yet.
    """
    if explicit := os.environ.get("TASKOPENRC"):
        return Path(explicit).expanduser()

    config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(config_home) if config_home else Path.home() / ".config"
    return base / "taskopen" / "config.yml"


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid configuration: '{key}' must be a mapping")
    return value


def _build_dataclass(cls: type, data: dict[str, Any], section: str) -> Any:
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(
            f"Unknown settings in '{section}'",
            details=", ".join(unknown),
            suggestions=["Check the setting names against 'taskopen config show'"],
        )
    return cls(**data)


def _build_action(data: Any, index: int) -> ActionRule:
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid configuration: actions[{index}] must be a mapping")
    data = dict(data)
    if "modes" in data:
        data["modes"] = tuple(data["modes"] or ())
    for key in ("regex", "labelregex", "filtercommand", "inlinecommand"):
        if key in data and data[key] is None:
            data[key] = ""
    return _build_dataclass(ActionRule, data, f"actions[{index}]")


def config_from_dict(data: dict[str, Any], path: Path | None = None) -> Config:
    """Map a parsed YAML document onto Config, then validate it."""
    try:
        general = _build_dataclass(GeneralConfig, _section(data, "general"), "general")
        executor_data = _section(data, "executor")
        executor = ExecutorConfig(
            retry=_build_dataclass(RetryPolicy, _section(executor_data, "retry"), "executor.retry"),
            sandbox=_build_dataclass(SandboxPolicy, _section(executor_data, "sandbox"), "executor.sandbox"),
        )
        raw_actions = data.get("actions") or []
        if not isinstance(raw_actions, list):
            raise ConfigError("Invalid configuration: 'actions' must be a list")
        actions = [_build_action(action, i) for i, action in enumerate(raw_actions)]
    except TypeError as e:
        raise ConfigError("Invalid configuration", details=str(e)) from e

    config = Config(
        general=general,
        executor=executor,
        actions=actions,
        config_version=str(data.get("config_version", CONFIG_VERSION)),
        path=path,
    )
    validate_config(config)
    return config


def _matches(value: Any, expected: Any) -> bool:
    origin = get_origin(expected)
    if origin is not None:
        item = get_args(expected)[0]
        return isinstance(value, origin) and all(_matches(element, item) for element in value)
    if isinstance(value, bool):
        return expected is bool
    return isinstance(value, expected)


def _type_name(expected: Any) -> str:
    if expected is NUMBER:
        return "a number"
    if get_origin(expected) is not None:
        return f"a list of {get_args(expected)[0].__name__}"
    return expected.__name__


def _type_problems(obj: Any, types: dict[str, Any], section: str) -> list[str]:
    """Report settings whose values have the wrong type."""
    return [
        f"{section}.{name}: expected {_type_name(expected)}, got {getattr(obj, name)!r}"
        for name, expected in types.items()
        if not _matches(getattr(obj, name), expected)
    ]


def validate_config(config: Config) -> None:
    """Check a configuration and report every problem at once.

    Raises:
        ConfigError: If any setting is invalid
    """
    problems: list[str] = []

    general_types = _type_problems(config.general, GENERAL_TYPES, "general")
    problems.extend(general_types)
    problems.extend(_type_problems(config.executor.retry, RETRY_TYPES, "executor.retry"))
    problems.extend(_type_problems(config.executor.sandbox, SANDBOX_TYPES, "executor.sandbox"))

    if not general_types:
        if not config.general.editor.strip():
            problems.append("general.editor: editor command is required")
        if not config.general.taskbin.strip():
            problems.append("general.taskbin: taskwarrior binary path is required")
        if config.general.multiple_policy not in [policy.value for policy in MultiplePolicy]:
            problems.append(f"general.multiple_policy: must be one of {', '.join(p.value for p in MultiplePolicy)}")
        if config.general.action_timeout <= 0 or config.general.filter_timeout <= 0:
            problems.append("general: timeouts must be positive")
    if isinstance(config.executor.retry.max_attempts, int) and config.executor.retry.max_attempts < 1:
        problems.append("executor.retry.max_attempts: must be at least 1")

    if not config.actions:
        problems.append("actions: at least one action must be defined")

    seen: set[str] = set()
    for i, action in enumerate(config.actions):
        prefix = f"actions[{i}]"
        action_types = _type_problems(action, ACTION_TYPES, prefix)
        if action_types:
            problems.extend(action_types)
            continue
        if not ACTION_NAME_PATTERN.match(action.name):
            problems.append(f"{prefix}.name: '{action.name}' is not a valid action name")
        if action.name in seen:
            problems.append(f"{prefix}.name: duplicate action name '{action.name}'")
        seen.add(action.name)
        if action.target not in VALID_TARGETS:
            problems.append(f"{prefix}.target: must be one of {', '.join(VALID_TARGETS)}")
        if not action.command.strip():
            problems.append(f"{prefix}.command: action command is required")
        unknown_modes = [mode for mode in action.modes if mode not in VALID_MODES]
        if unknown_modes:
            problems.append(f"{prefix}.modes: unknown modes {', '.join(unknown_modes)}")
        compiled = compile_rule(action)
        if isinstance(compiled, InvalidRule):
            problems.append(f"{prefix}: {compiled.reason}")

    if problems:
        logger.debug("Configuration validation failed", problems=problems)
        raise ConfigError(
            "Configuration validation failed",
            details="\n  - " + "\n  - ".join(problems),
            suggestions=["Check required fields", "Verify action definitions"],
        )


def load_config(path: str | Path | None = None) -> Config:
    """Load and validate the configuration.

    Args:
        path: Config file (defaults to find_config_path())

    Returns:
        Validated Config

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid
    """
    config_path = Path(path) if path is not None else find_config_path()

    if not config_path.exists():
        raise ConfigError(
            "Configuration file not found",
            details=f"Looking for config at: {config_path}",
            suggestions=["Run 'taskopen config init' to create a new configuration"],
            error_type=ErrorType.CONFIG_NOT_FOUND,
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error("Failed to parse config", path=str(config_path), error=str(e))
        raise ConfigError("Invalid YAML configuration", details=str(e), suggestions=["Check YAML syntax"]) from e
    except OSError as e:
        logger.error("Failed to read config", path=str(config_path), error=str(e))
        raise ConfigError(f"Failed to read configuration from {config_path}", details=str(e)) from e

    if not isinstance(data, dict):
        raise ConfigError(f"Invalid configuration: expected mapping, got {type(data).__name__}")

    config = config_from_dict(data, path=config_path)
    logger.debug("Config loaded successfully", path=str(config_path), actions=len(config.actions))
    return config


def config_to_dict(config: Config) -> dict[str, Any]:
    actions = []
    for action in config.actions:
        entry = asdict(action)
        entry["modes"] = list(action.modes)
        actions.append(entry)
    return {
        "config_version": config.config_version,
        "general": asdict(config.general),
        "executor": {"retry": asdict(config.executor.retry), "sandbox": asdict(config.executor.sandbox)},
        "actions": actions,
    }


def save_config(config: Config, path: str | Path) -> None:
    """Write the configuration as YAML, creating parent directories."""
    config_path = Path(path)
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(config_to_dict(config), f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        logger.error("Failed to save config", path=str(config_path), error=str(e))
        raise ConfigError(f"Failed to save config to {config_path}", details=str(e)) from e
    logger.debug("Config saved successfully", path=str(config_path))
