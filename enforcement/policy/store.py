"""
Policy row storage.

Rows are opaque, ordered tuples of strings grouped by shape key (``p``,
``p2``, ``g`` ...). Arity is checked by the enforcer, not here.
"""

from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from shared.logging import get_logger


Row = Tuple[str, ...]


class PolicyStore:
    """Insertion-ordered policy rows per shape key."""

    def __init__(self):
        self.logger = get_logger("enforcement.policy_store")
        self._rows: Dict[str, List[Row]] = {}
        # Row multiplicities per key, kept in step with _rows
        self._counts: Dict[str, Counter] = {}
        self._unique: Set[str] = set()
        # (key, field_index) -> value -> rows, dropped on mutation of key
        self._indexes: Dict[Tuple[str, int], Dict[str, List[Row]]] = {}

    def set_unique(self, key: str, unique: bool = True):
        """Reject identical rows under ``key`` from now on."""
        if unique:
            self._unique.add(key)
        else:
            self._unique.discard(key)

    def is_unique(self, key: str) -> bool:
        return key in self._unique

    def add(self, key: str, row: Sequence[str]) -> bool:
        """Append ``row``; False if it exists and ``key`` is unique."""
        row = tuple(row)
        counts = self._counts.setdefault(key, Counter())
        if key in self._unique and counts[row]:
            return False
        self._rows.setdefault(key, []).append(row)
        counts[row] += 1
        self._drop_indexes(key)
        return True

    def add_many(self, key: str, rows: Iterable[Sequence[str]]) -> bool:
        """Append all rows, or none if any is rejected as a duplicate."""
        rows = [tuple(row) for row in rows]
        counts = self._counts.setdefault(key, Counter())
        if key in self._unique:
            if any(counts[row] for row in rows) or len(set(rows)) != len(rows):
                return False
        self._rows.setdefault(key, []).extend(rows)
        counts.update(rows)
        self._drop_indexes(key)
        return True

    def remove(self, key: str, row: Sequence[str]) -> bool:
        """Remove the first occurrence of ``row``; False if absent."""
        row = tuple(row)
        if not self._counts.get(key, {}).get(row):
            return False
        self._rows[key].remove(row)
        self._discount(key, row)
        self._drop_indexes(key)
        return True

    def remove_many(self, key: str, rows: Iterable[Sequence[str]]) -> bool:
        """Remove all rows, or none if any is absent."""
        rows = [tuple(row) for row in rows]
        if not self._contains_all(key, rows):
            return False
        if not rows:
            return True
        doomed = Counter(rows)
        kept: List[Row] = []
        for row in self._rows[key]:
            if doomed[row]:
                doomed[row] -= 1
                self._discount(key, row)
            else:
                kept.append(row)
        self._rows[key] = kept
        self._drop_indexes(key)
        return True

    def remove_filtered(self, key: str, field_index: int, *values: str) -> List[Row]:
        """Remove rows whose fields from ``field_index`` on equal ``values``.

        An empty string in ``values`` matches any field value. Returns the
        removed rows.
        """
        rows = self._rows.get(key, [])
        kept: List[Row] = []
        removed: List[Row] = []
        for row in rows:
            if self._matches_filter(row, field_index, values):
                removed.append(row)
            else:
                kept.append(row)
        if removed:
            self._rows[key] = kept
            for row in removed:
                self._discount(key, row)
            self._drop_indexes(key)
        return removed

    def update(self, key: str, old_row: Sequence[str], new_row: Sequence[str]) -> bool:
        """Replace ``old_row`` in place; False if absent or the result would duplicate."""
        old_row, new_row = tuple(old_row), tuple(new_row)
        counts = self._counts.get(key)
        if not counts or not counts[old_row]:
            return False
        if key in self._unique and new_row != old_row and counts[new_row]:
            return False
        rows = self._rows[key]
        rows[rows.index(old_row)] = new_row
        self._discount(key, old_row)
        counts[new_row] += 1
        self._drop_indexes(key)
        return True

    def update_many(self, key: str, old_rows: Sequence[Sequence[str]], new_rows: Sequence[Sequence[str]]) -> bool:
        if len(old_rows) != len(new_rows):
            return False
        old_rows = [tuple(row) for row in old_rows]
        if not self._contains_all(key, old_rows):
            return False
        rows = self._rows.get(key, [])
        counts = self._counts.setdefault(key, Counter())
        for old_row, new_row in zip(old_rows, new_rows):
            new_row = tuple(new_row)
            rows[rows.index(old_row)] = new_row
            self._discount(key, old_row)
            counts[new_row] += 1
        self._drop_indexes(key)
        return True

    def get_all(self, key: str) -> List[Row]:
        return list(self._rows.get(key, []))

    def rows(self, key: str) -> Sequence[Row]:
        """Live view for readers holding the enforcer's read lock."""
        return self._rows.get(key, ())

    def filter(self, key: str, field_index: int, value: str) -> List[Row]:
        """Rows whose field at ``field_index`` equals ``value``."""
        index = self._indexes.get((key, field_index))
        if index is None:
            index = {}
            for row in self._rows.get(key, []):
                if field_index < len(row):
                    index.setdefault(row[field_index], []).append(row)
            self._indexes[(key, field_index)] = index
        return list(index.get(value, []))

    def get_filtered(self, key: str, field_index: int, *values: str) -> List[Row]:
        return [row for row in self._rows.get(key, []) if self._matches_filter(row, field_index, values)]

    def has(self, key: str, row: Sequence[str]) -> bool:
        return self._counts.get(key, {}).get(tuple(row), 0) > 0

    def keys(self) -> List[str]:
        return list(self._rows)

    def count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._rows.get(key, []))
        return sum(len(rows) for rows in self._rows.values())

    def field_values(self, key: str, field_index: int) -> List[str]:
        """Distinct values of one field, in first-seen order."""
        values: Dict[str, None] = {}
        for row in self._rows.get(key, []):
            if field_index < len(row):
                values[row[field_index]] = None
        return list(values)

    def clear(self, key: Optional[str] = None):
        if key is None:
            self._rows.clear()
            self._counts.clear()
            self._indexes.clear()
        else:
            self._rows.pop(key, None)
            self._counts.pop(key, None)
            self._drop_indexes(key)

    def copy(self) -> "PolicyStore":
        """Independent copy with the same uniqueness settings."""
        other = PolicyStore()
        other._unique = set(self._unique)
        other._rows = {key: list(rows) for key, rows in self._rows.items()}
        other._counts = {key: Counter(counts) for key, counts in self._counts.items()}
        return other

    @staticmethod
    def _matches_filter(row: Row, field_index: int, values: Sequence[str]) -> bool:
        if field_index < 0 or field_index + len(values) > len(row):
            return False
        for offset, value in enumerate(values):
            if value and row[field_index + offset] != value:
                return False
        return True

    def _contains_all(self, key: str, rows: Sequence[Row]) -> bool:
        counts = self._counts.get(key, {})
        return all(counts.get(row, 0) >= needed for row, needed in Counter(rows).items())

    def _discount(self, key: str, row: Row):
        counts = self._counts[key]
        counts[row] -= 1
        if counts[row] <= 0:
            del counts[row]

    def _drop_indexes(self, key: str):
        for index_key in [k for k in self._indexes if k[0] == key]:
            del self._indexes[index_key]
