"""
Persistence adapter interfaces.

Adapters load and save raw policy rows as ``(key, row)`` pairs, where key is
a policy or role shape key such as ``"p"`` or ``"g2"``. The incremental hooks
are optional: the base implementations raise NotImplementedError and the
enforcer then skips them.
"""

import threading
from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

from shared.logging import get_logger


PolicyLine = Tuple[str, Sequence[str]]


class Adapter(ABC):
    """Synchronous persistence adapter."""

    @abstractmethod
    def load_policy(self) -> List[PolicyLine]:
        """Return every stored row."""

    @abstractmethod
    def save_policy(self, rows: Sequence[PolicyLine]) -> None:
        """Replace the stored rows with ``rows``."""

    def add_policy(self, key: str, row: Sequence[str]) -> None:
        raise NotImplementedError

    def add_policies(self, key: str, rows: Sequence[Sequence[str]]) -> None:
        for row in rows:
            self.add_policy(key, row)

    def remove_policy(self, key: str, row: Sequence[str]) -> None:
        raise NotImplementedError

    def remove_policies(self, key: str, rows: Sequence[Sequence[str]]) -> None:
        for row in rows:
            self.remove_policy(key, row)

    def remove_filtered_policy(self, key: str, field_index: int, *values: str) -> None:
        raise NotImplementedError

    def update_policy(self, key: str, old_row: Sequence[str], new_row: Sequence[str]) -> None:
        raise NotImplementedError


class AsyncAdapter(ABC):
    """Adapter whose I/O is awaited, for use with ``load_policy_async``."""

    @abstractmethod
    async def load_policy(self) -> List[PolicyLine]:
        """Return every stored row."""

    @abstractmethod
    async def save_policy(self, rows: Sequence[PolicyLine]) -> None:
        """Replace the stored rows with ``rows``."""


class MemoryAdapter(Adapter):
    """In-process adapter with full incremental support."""

    def __init__(self, rows: Sequence[PolicyLine] = ()):
        self.logger = get_logger("enforcement.persist.memory")
        self._rows: List[Tuple[str, Tuple[str, ...]]] = [(key, tuple(row)) for key, row in rows]
        self._lock = threading.Lock()

    def load_policy(self) -> List[PolicyLine]:
        with self._lock:
            return [(key, list(row)) for key, row in self._rows]

    def save_policy(self, rows: Sequence[PolicyLine]) -> None:
        with self._lock:
            self._rows = [(key, tuple(row)) for key, row in rows]
        self.logger.debug("Policy saved", rows=len(rows))

    def add_policy(self, key: str, row: Sequence[str]) -> None:
        with self._lock:
            self._rows.append((key, tuple(row)))

    def remove_policy(self, key: str, row: Sequence[str]) -> None:
        entry = (key, tuple(row))
        with self._lock:
            if entry in self._rows:
                self._rows.remove(entry)

    def remove_filtered_policy(self, key: str, field_index: int, *values: str) -> None:
        def matches(entry_key: str, row: Tuple[str, ...]) -> bool:
            if entry_key != key or field_index + len(values) > len(row):
                return False
            return all(not value or row[field_index + i] == value for i, value in enumerate(values))

        with self._lock:
            self._rows = [(k, row) for k, row in self._rows if not matches(k, row)]

    def update_policy(self, key: str, old_row: Sequence[str], new_row: Sequence[str]) -> None:
        old_entry = (key, tuple(old_row))
        with self._lock:
            if old_entry in self._rows:
                self._rows[self._rows.index(old_entry)] = (key, tuple(new_row))

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)
