"""Per-task environment construction and variable expansion."""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

logger = structlog.get_logger()

_VARIABLE_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def format_value(value: Any) -> str:
    """Render a task attribute the way it is exposed to commands."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, list):
        parts = []
        for item in value:
            if isinstance(item, dict) and "description" in item:
                parts.append(format_value(item["description"]))
            else:
                parts.append(format_value(item))
        return ",".join(parts)
    return str(value)


def expand_variables(text: str, env: Mapping[str, str]) -> str:
    """Replace ``$NAME`` and ``${NAME}`` with values from env.

    Names are matched whole, so ``$ID`` never consumes the start of ``$ID2``.
    Unknown names are left as they are.
    """

    def replace(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        if name in env:
            return env[name]
        return match.group(0)

    return _VARIABLE_PATTERN.sub(replace, text)


def expand_home(path: str, env: Mapping[str, str] | None = None) -> str:
    """Expand a leading ``~`` to the user's home directory."""
    if path != "~" and not path.startswith("~/"):
        return path
    home = (env or {}).get("HOME") or os.environ.get("HOME") or str(Path.home())
    return home + path[1:]


def parse_attribute_list(attributes: str) -> list[str]:
    return [attr.strip() for attr in attributes.split(",") if attr.strip()]


class EnvironmentBuilder:
    """Derives the base variable map for each task.

    The process environment is captured once when the builder is created;
    every map handed out is an independent copy of that snapshot.
    """

    def __init__(
        self,
        editor: str = "",
        path_ext: str = "",
        task_attributes: str = "",
        base_environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the builder.

        Args:
            editor: Editor command exported as EDITOR (empty keeps the inherited value)
            path_ext: Directories prepended to PATH
            task_attributes: Comma separated task attributes exported as TASK_<ATTR>
            base_environ: Environment to snapshot (defaults to os.environ)
        """
        source = os.environ if base_environ is None else base_environ
        self._snapshot: Mapping[str, str] = MappingProxyType(dict(source))
        self.editor = editor
        self.path_ext = path_ext
        self.attributes = parse_attribute_list(task_attributes)
        logger.debug("Environment snapshot captured", variables=len(self._snapshot), attributes=self.attributes)

    @property
    def snapshot(self) -> Mapping[str, str]:
        return self._snapshot

    def build(self, task: Mapping[str, Any]) -> dict[str, str]:
        """Build the base environment for a task.

        Args:
            task: Task attribute map

        Returns:
            A fresh dictionary owned by the caller
        """
        env = dict(self._snapshot)

        if self.path_ext:
            current = env.get("PATH", "")
            env["PATH"] = f"{self.path_ext}{os.pathsep}{current}" if current else self.path_ext

        if self.editor:
            env["EDITOR"] = self.editor

        uuid = task.get("uuid")
        if isinstance(uuid, str):
            env["UUID"] = uuid

        env["ID"] = format_value(task["id"]) if "id" in task else ""

        for attr in self.attributes:
            if attr in task:
                env[f"TASK_{attr.upper()}"] = format_value(task[attr])

        return env
