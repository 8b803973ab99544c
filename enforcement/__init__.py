"""
Authorization decision engine.

Load a model, feed it policy rows and role links, and ask whether a
request is permitted:

    enforcer = Enforcer({
        "r": "sub, obj, act",
        "p": "sub, obj, act",
        "g": "_, _",
        "e": "some(where (p.eft == allow))",
        "m": "g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act",
    })
    enforcer.add_policy("admin", "/data", "read")
    enforcer.add_role_link("alice", "admin")
    enforcer.enforce("alice", "/data", "read")  # True
"""

from .enforcer import DEFAULT_CONTEXT, EnforceContext, EnforceResult, Enforcer
from .model import Model
from .persist import Adapter, AsyncAdapter, MemoryAdapter, Watcher
from .rbac import RoleManager

__all__ = [
    "DEFAULT_CONTEXT",
    "EnforceContext",
    "EnforceResult",
    "Enforcer",
    "Model",
    "Adapter",
    "AsyncAdapter",
    "MemoryAdapter",
    "Watcher",
    "RoleManager",
]
