"""
Role hierarchy manager.

Holds one directed "has-role" graph per domain and answers transitive
queries with a depth-bounded breadth-first search, so cyclic graphs always
terminate. Not synchronized on its own: the enforcer serializes writers.
"""

from collections import deque
from typing import Callable, Dict, Iterable, List, Optional, Set

from shared.config import DEFAULT_MAX_HIERARCHY_LEVEL
from shared.logging import get_logger


DEFAULT_DOMAIN = ""

MatchingFn = Callable[[str, str], bool]
Graph = Dict[str, Dict[str, None]]


class RoleManager:
    """Directed role graph partitioned by domain."""

    def __init__(self, max_hierarchy_level: int = DEFAULT_MAX_HIERARCHY_LEVEL, name: str = "g"):
        if max_hierarchy_level < 0:
            raise ValueError("max_hierarchy_level must be non-negative")
        self.name = name
        self.max_hierarchy_level = max_hierarchy_level
        self.logger = get_logger(f"enforcement.rbac.{name}")
        # domain -> subject -> ordered set of roles
        self._graphs: Dict[str, Graph] = {}
        self.matching_fn: Optional[MatchingFn] = None
        self.domain_matching_fn: Optional[MatchingFn] = None

    def add_matching_fn(self, fn: Optional[MatchingFn]):
        """Treat stored role names as patterns, e.g. ``fn=key_match``."""
        self.matching_fn = fn

    def add_domain_matching_fn(self, fn: Optional[MatchingFn]):
        """Treat stored domains as patterns, e.g. ``fn=glob_match`` for ``tenant:*``."""
        self.domain_matching_fn = fn

    def add_link(self, subject: str, role: str, domain: Optional[str] = None):
        """Add ``subject -> role``. Adding an existing link is a no-op."""
        graph = self._graphs.setdefault(self._domain_key(domain), {})
        graph.setdefault(subject, {})[role] = None
        graph.setdefault(role, {})
        self.logger.debug("Role link added", subject=subject, role=role, domain=domain)

    def delete_link(self, subject: str, role: str, domain: Optional[str] = None):
        """Remove ``subject -> role``. Deleting a missing link is a no-op."""
        graph = self._graphs.get(self._domain_key(domain))
        if not graph or subject not in graph:
            return
        if role in graph[subject]:
            del graph[subject][role]
            self.logger.debug("Role link deleted", subject=subject, role=role, domain=domain)

    def has_link(self, subject: str, role: str, domain: Optional[str] = None,
                 max_depth: Optional[int] = None) -> bool:
        """True iff ``subject == role`` or ``role`` is reachable in ``max_depth`` hops."""
        if subject == role:
            return True

        depth = self.max_hierarchy_level if max_depth is None else max_depth
        graphs = self._matching_graphs(domain)
        if not graphs:
            return False

        visited: Set[str] = {subject}
        frontier = deque([subject])
        for _ in range(depth):
            next_frontier: deque = deque()
            while frontier:
                current = frontier.popleft()
                for neighbor in self._neighbors(current, graphs):
                    if neighbor == role:
                        return True
                    if neighbor not in visited:
                        visited.add(neighbor)
                        next_frontier.append(neighbor)
            if not next_frontier:
                break
            frontier = next_frontier
        return False

    def get_roles(self, subject: str, domain: Optional[str] = None) -> List[str]:
        """Direct roles of ``subject``."""
        return list(self._neighbors(subject, self._matching_graphs(domain)))

    def get_implicit_roles(self, subject: str, domain: Optional[str] = None) -> List[str]:
        """All roles reachable from ``subject`` within the hierarchy bound, nearest first."""
        graphs = self._matching_graphs(domain)
        seen: Dict[str, None] = {}
        frontier = [subject]
        for _ in range(self.max_hierarchy_level):
            next_frontier = []
            for current in frontier:
                for neighbor in self._neighbors(current, graphs):
                    if neighbor != subject and neighbor not in seen:
                        seen[neighbor] = None
                        next_frontier.append(neighbor)
            if not next_frontier:
                break
            frontier = next_frontier
        return list(seen)

    def get_users(self, role: str, domain: Optional[str] = None) -> List[str]:
        """Subjects holding ``role`` directly."""
        users: Dict[str, None] = {}
        graphs = self._matching_graphs(domain)
        for graph in graphs:
            for subject in graph:
                if subject != role and role in self._neighbors(subject, graphs):
                    users[subject] = None
        return list(users)

    def get_domains(self, subject: str) -> List[str]:
        """Domains in which ``subject`` holds at least one role."""
        return [
            domain for domain, graph in self._graphs.items()
            if domain != DEFAULT_DOMAIN and graph.get(subject)
        ]

    def clear(self):
        self._graphs.clear()

    def link_count(self) -> int:
        return sum(len(roles) for graph in self._graphs.values() for roles in graph.values())

    def _domain_key(self, domain: Optional[str]) -> str:
        return DEFAULT_DOMAIN if domain is None else domain

    def _matching_graphs(self, domain: Optional[str]) -> List[Graph]:
        key = self._domain_key(domain)
        if self.domain_matching_fn is None or key == DEFAULT_DOMAIN:
            graph = self._graphs.get(key)
            return [graph] if graph is not None else []
        return [
            graph for pattern, graph in self._graphs.items()
            if pattern == key or self.domain_matching_fn(key, pattern)
        ]

    def _neighbors(self, name: str, graphs: Iterable[Graph]) -> Dict[str, None]:
        neighbors: Dict[str, None] = {}
        for graph in graphs:
            neighbors.update(graph.get(name, {}))
            if self.matching_fn is not None:
                # Links declared on a pattern apply to every name it matches;
                # a name matching a stored role pattern also inherits that role.
                for node, roles in graph.items():
                    if node != name and self.matching_fn(name, node):
                        neighbors[node] = None
                        neighbors.update(roles)
        neighbors.pop(name, None)
        return neighbors
