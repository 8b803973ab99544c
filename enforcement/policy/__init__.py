"""
Policy package: ordered, mutation-friendly policy row storage.
"""

from .store import PolicyStore, Row

__all__ = ["PolicyStore", "Row"]
