"""Best-effort process sandboxing.

Each declared knob is either applied to the spawned process or reported
back as a warning; nothing is dropped silently.
"""

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from taskopen.errors import SandboxUnsupportedError, SandboxViolationError
from taskopen.models import SandboxPolicy

logger = structlog.get_logger()


@dataclass
class SandboxPlan:
    """Popen arguments implementing a sandbox policy on this platform."""

    popen_kwargs: dict[str, Any] = field(default_factory=dict)
    preexec_fn: Callable[[], None] | None = None
    warnings: list[str] = field(default_factory=list)


def _memory_limiter(limit_mb: int) -> Callable[[], None]:
    import resource

    limit_bytes = limit_mb * 1024 * 1024

    def apply() -> None:
        resource.setrlimit(resource.RLIMIT_AS, (limit_bytes, limit_bytes))

    return apply


def _unprivileged_ids() -> tuple[int, int] | None:
    """Pick the uid/gid to drop to when running as root."""
    sudo_uid = os.environ.get("SUDO_UID")
    sudo_gid = os.environ.get("SUDO_GID")
    if sudo_uid and sudo_gid and sudo_uid.isdigit() and sudo_gid.isdigit():
        return int(sudo_uid), int(sudo_gid)

    import pwd

    try:
        nobody = pwd.getpwnam("nobody")
    except KeyError:
        return None
    return nobody.pw_uid, nobody.pw_gid


def check_allowed_path(working_dir: str | None, allowed_paths: list[str]) -> None:
    """Ensure the working directory lies inside one of the allowed paths.

    Raises:
        SandboxViolationError: If the directory is outside every allowed path
    """
    directory = Path(working_dir or os.getcwd()).expanduser().resolve()
    for allowed in allowed_paths:
        root = Path(allowed).expanduser().resolve()
        if directory == root or root in directory.parents:
            return
    raise SandboxViolationError(
        "Working directory is outside the sandbox",
        details=f"Directory: {directory}, allowed: {', '.join(allowed_paths)}",
        suggestions=["Add the directory to executor.sandbox.allowed_paths"],
    )


def prepare_sandbox(policy: SandboxPolicy, working_dir: str | None = None) -> SandboxPlan:
    """Translate a sandbox policy into Popen arguments.

    Args:
        policy: Declared sandbox settings
        working_dir: Directory the process will run in

    Returns:
        SandboxPlan with the enforceable parts applied and warnings for the rest

    Raises:
        SandboxViolationError: If the working directory breaks the path allow-list
        SandboxUnsupportedError: If the policy is strict and a knob cannot be enforced
    """
    plan = SandboxPlan()
    if policy.is_empty:
        return plan

    posix = os.name == "posix"

    if policy.max_memory_mb:
        if posix:
            plan.preexec_fn = _memory_limiter(policy.max_memory_mb)
        else:
            plan.warnings.append("max_memory_mb: memory limits are not supported on this platform")

    if policy.drop_privileges:
        if not posix:
            plan.warnings.append("drop_privileges: privilege dropping is not supported on this platform")
        elif os.geteuid() == 0:
            ids = _unprivileged_ids()
            if ids is None:
                plan.warnings.append("drop_privileges: no unprivileged user available")
            else:
                uid, gid = ids
                plan.popen_kwargs.update(user=uid, group=gid, extra_groups=[])
                logger.debug("Dropping privileges for child process", uid=uid, gid=gid)

    if policy.allowed_paths:
        check_allowed_path(working_dir, policy.allowed_paths)
        plan.warnings.append("allowed_paths: only the working directory is checked, file access is not confined")

    if policy.disable_network:
        plan.warnings.append("disable_network: network isolation is not supported on this platform")

    if plan.warnings and policy.strict:
        raise SandboxUnsupportedError(
            "Sandbox policy cannot be enforced on this platform",
            details="; ".join(plan.warnings),
            suggestions=["Disable executor.sandbox.strict or remove the unsupported settings"],
        )

    return plan


def sandbox_support() -> dict[str, bool]:
    """Which sandbox settings this platform can enforce."""
    posix = os.name == "posix"
    return {
        "max_memory_mb": posix,
        "drop_privileges": posix,
        "allowed_paths": False,
        "disable_network": False,
    }
