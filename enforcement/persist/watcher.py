"""
Watcher interface for cross-process policy change propagation.
"""

from abc import ABC, abstractmethod
from typing import Callable


class Watcher(ABC):
    """Transport-agnostic change notifier.

    The enforcer calls ``update()`` after every committed local mutation and
    registers its ``reload_policy`` as the update callback, which the watcher
    invokes when another process reports a change.
    """

    @abstractmethod
    def set_update_callback(self, callback: Callable[[], None]) -> None:
        """Register the callback run on remote changes."""

    @abstractmethod
    def update(self) -> None:
        """Announce a local change to other processes."""
