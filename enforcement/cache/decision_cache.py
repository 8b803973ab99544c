"""
In-process decision cache.
"""

import json
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional, Sequence

from shared.logging import get_logger


_SCALARS = (str, int, float, bool)


def make_request_key(context: str, values: Sequence[Any]) -> Optional[str]:
    """Canonical key for a request, or None when a value is not cacheable."""
    if not all(isinstance(value, _SCALARS) for value in values):
        return None
    return json.dumps([context, *values], separators=(",", ":"))


class DecisionCache:
    """Thread-safe LRU cache of enforcement decisions.

    Unbounded when ``max_size`` is None. Invalidated as a whole on any policy
    or role mutation.
    """

    def __init__(self, max_size: Optional[int] = None):
        if max_size is not None and max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.logger = get_logger("enforcement.cache")
        self._entries: "OrderedDict[str, bool]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[bool]:
        with self._lock:
            decision = self._entries.get(key)
            if decision is None:
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return decision

    def put(self, key: str, decision: bool):
        with self._lock:
            self._entries[key] = decision
            self._entries.move_to_end(key)
            if self.max_size is not None and len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def invalidate_all(self):
        with self._lock:
            size = len(self._entries)
            self._entries.clear()
        if size:
            self.logger.debug("Decision cache invalidated", entries=size)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
            }
