"""taskopen - run actions attached to Taskwarrior tasks."""

__version__ = "0.1.0"
