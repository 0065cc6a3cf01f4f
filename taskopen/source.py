"""Task source interface."""

import threading
from abc import ABC, abstractmethod
from typing import Any


class TaskSource(ABC):
    """Abstract base class for task sources."""

    @abstractmethod
    def fetch(self, filters: list[str], cancel: threading.Event | None = None) -> list[dict[str, Any]]:
        """Fetch the tasks matching the filters, in source order.

        Each task is an attribute map with at least ``id``, ``uuid``,
        ``description`` and, when present, ``annotations`` as a list of
        ``{"entry", "description"}`` maps.
        """
        pass

    @abstractmethod
    def version(self, cancel: threading.Event | None = None) -> str:
        """Return the version of the underlying task tracker."""
        pass
