"""Matching of action rules against task attributes."""

import copy
import re
import threading
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from taskopen.environment import EnvironmentBuilder, expand_home, expand_variables, format_value
from taskopen.executor import Executor
from taskopen.models import (
    ANNOTATIONS_TARGET,
    ActionRule,
    Actionable,
    CompiledRule,
    InvalidRule,
    ValidRule,
    compile_rule,
)

logger = structlog.get_logger()

ANNOTATION_SPLIT = re.compile(r"^((\S+):\s+)?(.*)$", re.DOTALL)


def split_annotation(text: str) -> tuple[str, str]:
    """Split an annotation into its optional ``label:`` prefix and body."""
    match = ANNOTATION_SPLIT.match(text)
    if match is None:
        return "", text
    return match.group(2) or "", match.group(3)


def _match_variables(match: re.Match[str]) -> dict[str, str]:
    variables = {"LAST_MATCH": match.group(0)}
    for index, group in enumerate(match.groups(), start=1):
        variables[f"MATCH_{index}"] = group or ""
    return variables


class Matcher:
    """Applies compiled action rules to tasks and produces Actionables."""

    def __init__(
        self,
        rules: Iterable[ActionRule],
        environment: EnvironmentBuilder,
        executor: Executor | None = None,
        filter_timeout: float | None = None,
    ) -> None:
        """Initialize the matcher.

        Rules are compiled once here; rules with malformed patterns are
        logged a single time and skipped for every task.

        Args:
            rules: Action rules in configured order
            environment: Builder for the per-task base environment
            executor: Executor used for filter commands
            filter_timeout: Deadline for each filter command in seconds
        """
        self.environment = environment
        self.executor = executor or Executor()
        self.filter_timeout = filter_timeout
        self.compiled: list[CompiledRule] = [compile_rule(rule) for rule in rules]

        # Targets in order of first appearance, each with its rules in configured order.
        self.rules_by_target: dict[str, list[ValidRule]] = {}
        for compiled in self.compiled:
            if isinstance(compiled, InvalidRule):
                logger.error("Skipping action with invalid pattern", action=compiled.rule.name, reason=compiled.reason)
                continue
            rule = compiled.rule
            if rule.target != ANNOTATIONS_TARGET and rule.has_label_regex:
                logger.warning(
                    "labelregex is ignored for actions not targeting annotations",
                    action=rule.name,
                    target=rule.target,
                )
            self.rules_by_target.setdefault(rule.target, []).append(compiled)

    @property
    def invalid_rules(self) -> list[InvalidRule]:
        return [compiled for compiled in self.compiled if isinstance(compiled, InvalidRule)]

    def match(
        self,
        tasks: Iterable[Mapping[str, Any]],
        single: bool = True,
        mode: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[Actionable]:
        """Find every actionable item across tasks.

        Args:
            tasks: Task attribute maps in source order
            single: Stop after the first matching rule per task attribute value
            mode: Run mode used to filter rules by their ``modes``
            cancel: Cancellation event passed to filter commands

        Returns:
            Actionables in task, target and rule order
        """
        actionables: list[Actionable] = []
        for task in tasks:
            actionables.extend(self.match_task(task, single=single, mode=mode, cancel=cancel))
        logger.debug("Matching finished", actionables=len(actionables))
        return actionables

    def match_task(
        self,
        task: Mapping[str, Any],
        single: bool = True,
        mode: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[Actionable]:
        base_env = self.environment.build(task)
        matches: list[Actionable] = []

        for target, rules in self.rules_by_target.items():
            if target not in task:
                continue
            eligible = [compiled for compiled in rules if compiled.rule.allowed_in(mode)]
            if not eligible:
                continue

            if target == ANNOTATIONS_TARGET:
                annotations = task[target]
                if not isinstance(annotations, list):
                    logger.warning("Ignoring malformed annotations", task=base_env.get("UUID"))
                    continue
                for annotation in annotations:
                    if not isinstance(annotation, Mapping) or not isinstance(annotation.get("description"), str):
                        continue
                    entry = format_value(annotation.get("entry"))
                    matches.extend(
                        self._match_annotation(task, base_env, annotation["description"], entry, eligible, single, cancel)
                    )
            else:
                text = format_value(task[target])
                entry = format_value(task.get("entry"))
                matches.extend(self._match_plain(task, base_env, text, entry, eligible, single, cancel))

        return matches

    def _match_annotation(
        self,
        task: Mapping[str, Any],
        base_env: dict[str, str],
        text: str,
        entry: str,
        rules: list[ValidRule],
        single: bool,
        cancel: threading.Event | None,
    ) -> list[Actionable]:
        label, body = split_annotation(text)
        matches = []

        for compiled in rules:
            if compiled.label_regex is not None and not compiled.label_regex.search(label):
                continue
            found = compiled.regex.search(body)
            if found is None:
                continue

            env = dict(base_env)
            env.update(_match_variables(found))
            env["LABEL"] = label
            env["FILE"] = expand_home(body, env)
            env["ANNOTATION"] = text

            actionable = self._accept(task, compiled.rule, text, entry, env, cancel)
            if actionable is None:
                continue
            matches.append(actionable)
            if single:
                break

        return matches

    def _match_plain(
        self,
        task: Mapping[str, Any],
        base_env: dict[str, str],
        text: str,
        entry: str,
        rules: list[ValidRule],
        single: bool,
        cancel: threading.Event | None,
    ) -> list[Actionable]:
        matches = []

        for compiled in rules:
            found = compiled.regex.search(text)
            if found is None:
                continue

            env = dict(base_env)
            env.update(_match_variables(found))
            env["FILE"] = text
            env["ANNOTATION"] = text

            actionable = self._accept(task, compiled.rule, text, entry, env, cancel)
            if actionable is None:
                continue
            matches.append(actionable)
            if single:
                break

        return matches

    def _accept(
        self,
        task: Mapping[str, Any],
        rule: ActionRule,
        text: str,
        entry: str,
        env: dict[str, str],
        cancel: threading.Event | None,
    ) -> Actionable | None:
        """Run the filter gate and build the Actionable for a match."""
        if rule.filtercommand:
            command = expand_variables(rule.filtercommand, env)
            if not self.executor.execute_filter(command, env, timeout=self.filter_timeout, cancel=cancel):
                logger.info("Filter command filtered out action", action=rule.name, text=text)
                return None

        return Actionable(
            text=text,
            task_id=env.get("UUID") or env.get("ID", ""),
            task=copy.deepcopy(dict(task)),
            rule=rule,
            environment=env,
            entry=entry,
        )
