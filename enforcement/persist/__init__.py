"""
Persistence boundary: adapter and watcher interfaces, plus an in-memory adapter.
"""

from .adapter import Adapter, AsyncAdapter, MemoryAdapter, PolicyLine
from .watcher import Watcher

__all__ = ["Adapter", "AsyncAdapter", "MemoryAdapter", "PolicyLine", "Watcher"]
