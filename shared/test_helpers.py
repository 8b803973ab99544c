"""
Test helper functions and factory methods for the access enforcer.
"""

import asyncio
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from enforcement.persist import Adapter, AsyncAdapter, MemoryAdapter, PolicyLine, Watcher


@dataclass
class TestUser:
    """ABAC request subject."""
    __test__ = False

    name: str
    age: int
    tenant_id: str = "tenant-1"


class TestDataFactory:
    """Factory for creating test data."""
    __test__ = False

    @staticmethod
    def create_acl_model() -> Dict[str, str]:
        """Plain ACL: exact subject, object and action."""
        return {
            "r": "sub, obj, act",
            "p": "sub, obj, act",
            "e": "some(where (p.eft == allow))",
            "m": "r.sub == p.sub && r.obj == p.obj && r.act == p.act",
        }

    @staticmethod
    def create_rbac_model() -> Dict[str, str]:
        """RBAC with one role declaration."""
        return {
            "r": "sub, obj, act",
            "p": "sub, obj, act",
            "g": "_, _",
            "e": "some(where (p.eft == allow))",
            "m": "g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act",
        }

    @staticmethod
    def create_pattern_model() -> Dict[str, str]:
        """RBAC with glob objects and regex actions."""
        return {
            "r": "sub, obj, act",
            "p": "sub, obj, act",
            "g": "_, _",
            "e": "some(where (p.eft == allow))",
            "m": "g(r.sub, p.sub) && globMatch(r.obj, p.obj) && regexMatch(r.act, p.act)",
        }

    @staticmethod
    def create_domain_model() -> Dict[str, str]:
        """RBAC with domains (tenants)."""
        return {
            "r": "sub, dom, obj, act",
            "p": "sub, dom, obj, act",
            "g": "_, _, _",
            "e": "some(where (p.eft == allow))",
            "m": "g(r.sub, p.sub, r.dom) && r.dom == p.dom && r.obj == p.obj && r.act == p.act",
        }

    @staticmethod
    def create_deny_model() -> Dict[str, str]:
        """RBAC with explicit allow and deny rows."""
        return {
            "r": "sub, obj, act",
            "p": "sub, obj, act, eft",
            "g": "_, _",
            "e": "some(where (p.eft == allow)) && !some(where (p.eft == deny))",
            "m": "g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act",
        }

    @staticmethod
    def create_priority_model() -> Dict[str, str]:
        """First matching row in store order decides."""
        return {
            "r": "sub, obj, act",
            "p": "sub, obj, act, eft",
            "g": "_, _",
            "e": "priority(p.eft) || deny",
            "m": "g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act",
        }

    @staticmethod
    def create_abac_model() -> Dict[str, str]:
        """Attribute checks on the request subject."""
        return {
            "r": "sub, obj, act",
            "p": "sub_rule, obj, act",
            "e": "some(where (p.eft == allow))",
            "m": "r.sub.age >= 18 && r.obj == p.obj && r.act == p.act",
        }

    @staticmethod
    def create_rbac_policies() -> List[PolicyLine]:
        """Rows for ``create_rbac_model``."""
        return [
            ("p", ["admin", "/reports", "read"]),
            ("p", ["admin", "/reports", "write"]),
            ("p", ["analyst", "/reports", "read"]),
            ("p", ["bob", "/profile", "read"]),
            ("g", ["alice", "admin"]),
            ("g", ["carol", "analyst"]),
        ]


class RecordingWatcher(Watcher):
    """Watcher that counts updates and lets tests fire the callback."""

    def __init__(self):
        self.callback: Optional[Callable[[], None]] = None
        self.updates = 0

    def set_update_callback(self, callback: Callable[[], None]) -> None:
        self.callback = callback

    def update(self) -> None:
        self.updates += 1

    def trigger(self):
        """Simulate a change announced by another process."""
        if self.callback is not None:
            self.callback()


class FailingAdapter(Adapter):
    """Adapter whose every call fails, for error path tests."""

    def __init__(self, error: Optional[Exception] = None):
        self.error = error or ConnectionError("storage unavailable")

    def load_policy(self) -> List[PolicyLine]:
        raise self.error

    def save_policy(self, rows: Sequence[PolicyLine]) -> None:
        raise self.error

    def add_policy(self, key: str, row: Sequence[str]) -> None:
        raise self.error

    def remove_policy(self, key: str, row: Sequence[str]) -> None:
        raise self.error


class StaticAsyncAdapter(AsyncAdapter):
    """Async adapter serving a fixed set of rows."""

    def __init__(self, rows: Sequence[PolicyLine] = ()):
        self.rows: List[PolicyLine] = [(key, list(row)) for key, row in rows]
        self.saved: Optional[List[Any]] = None

    async def load_policy(self) -> List[PolicyLine]:
        return [(key, list(row)) for key, row in self.rows]

    async def save_policy(self, rows: Sequence[PolicyLine]) -> None:
        self.saved = [(key, list(row)) for key, row in rows]


class GatedAdapter(MemoryAdapter):
    """MemoryAdapter whose next load pauses after reading, until released."""

    def __init__(self, rows: Sequence[PolicyLine] = ()):
        super().__init__(rows)
        self.armed = False
        self.loaded = threading.Event()
        self.release = threading.Event()

    def load_policy(self) -> List[PolicyLine]:
        rows = super().load_policy()
        if self.armed:
            self.armed = False
            self.loaded.set()
            self.release.wait(timeout=10)
        return rows


class GatedAsyncAdapter(StaticAsyncAdapter):
    """Async adapter whose first load waits for ``release``.

    Create it inside a running event loop.
    """

    def __init__(self, rows: Sequence[PolicyLine] = ()):
        super().__init__(rows)
        self.loads = 0
        self.loaded = asyncio.Event()
        self.release = asyncio.Event()

    async def load_policy(self) -> List[PolicyLine]:
        self.loads += 1
        rows = await super().load_policy()
        if self.loads == 1:
            self.loaded.set()
            await self.release.wait()
        return rows
