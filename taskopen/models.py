"""Data models for taskopen."""

import re
from dataclasses import dataclass, field
from typing import Any

ANNOTATIONS_TARGET = "annotations"
DESCRIPTION_TARGET = "description"

TRIVIAL_PATTERNS = ("", ".*")


@dataclass(frozen=True)
class ActionRule:
    """A configured pattern and the command to run when it matches."""

    name: str
    command: str
    target: str = ANNOTATIONS_TARGET
    regex: str = ".*"
    labelregex: str = ""
    modes: tuple[str, ...] = ()
    filtercommand: str = ""
    inlinecommand: str = ""

    @property
    def has_label_regex(self) -> bool:
        return self.labelregex not in TRIVIAL_PATTERNS

    def allowed_in(self, mode: str | None) -> bool:
        """Whether the rule is enabled for the given run mode."""
        if mode is None or not self.modes:
            return True
        return mode in self.modes or "any" in self.modes


@dataclass(frozen=True)
class ValidRule:
    """An action rule whose patterns compiled."""

    rule: ActionRule
    regex: re.Pattern[str]
    label_regex: re.Pattern[str] | None = None


@dataclass(frozen=True)
class InvalidRule:
    """An action rule whose patterns failed to compile."""

    rule: ActionRule
    reason: str


CompiledRule = ValidRule | InvalidRule


def compile_rule(rule: ActionRule) -> CompiledRule:
    """Compile the patterns of a rule.

    Args:
        rule: Rule to compile

    Returns:
        ValidRule on success, InvalidRule carrying the compile error otherwise
    """
    try:
        regex = re.compile(rule.regex)
    except (re.error, TypeError) as e:
        return InvalidRule(rule=rule, reason=f"invalid regex {rule.regex!r}: {e}")

    label_regex = None
    if rule.target == ANNOTATIONS_TARGET and rule.has_label_regex:
        try:
            label_regex = re.compile(rule.labelregex)
        except (re.error, TypeError) as e:
            return InvalidRule(rule=rule, reason=f"invalid labelregex {rule.labelregex!r}: {e}")

    return ValidRule(rule=rule, regex=regex, label_regex=label_regex)


@dataclass
class Actionable:
    """A successful match between a task attribute and an action rule."""

    text: str
    task_id: str
    task: dict[str, Any]
    rule: ActionRule
    environment: dict[str, str]
    entry: str = ""


@dataclass
class RetryPolicy:
    """Retry and backoff settings for process execution.

    An empty ``retry_on_exit_codes`` retries every non-zero exit code.
    """

    max_attempts: int = 1
    base_delay: float = 0.1
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0
    retry_on_exit_codes: list[int] = field(default_factory=list)
    retry_on_spawn_error: bool = False


@dataclass
class SandboxPolicy:
    """Best-effort restrictions applied to spawned processes."""

    max_memory_mb: int = 0
    disable_network: bool = False
    allowed_paths: list[str] = field(default_factory=list)
    drop_privileges: bool = False
    strict: bool = False

    @property
    def is_empty(self) -> bool:
        return not (self.max_memory_mb or self.disable_network or self.allowed_paths or self.drop_privileges)


@dataclass
class ExecutionOptions:
    """Per-call execution options. ``None`` fields fall back to executor defaults."""

    timeout: float | None = None
    environment: dict[str, str] | None = None
    working_dir: str | None = None
    capture_output: bool | None = None
    interactive: bool | None = None
    sandbox: SandboxPolicy | None = None
    retry: RetryPolicy | None = None


@dataclass
class ExecutionResult:
    """Outcome of a process execution, kept for diagnostics even on failure."""

    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    timed_out: bool = False
    retry_attempts: int = 0
    command: str = ""
    sandbox_warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out
