"""
Cache package for the enforcer.

Provides an in-process LRU cache that stores enforcement decisions keyed
by the canonical request. Any policy or role mutation clears it before the
mutation call returns.
"""

from .decision_cache import DecisionCache, make_request_key

__all__ = ["DecisionCache", "make_request_key"]
