"""Task source implementations."""

from taskopen.sources.taskwarrior import TaskwarriorSource

__all__ = ["TaskwarriorSource"]
