"""
RBAC package: role hierarchy graphs with bounded transitive queries.
"""

from .role_manager import DEFAULT_DOMAIN, RoleManager

__all__ = ["DEFAULT_DOMAIN", "RoleManager"]
