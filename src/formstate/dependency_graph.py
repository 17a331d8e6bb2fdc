"""
Inverse dependency graph: source key -> keys that declared depends_on=[source].

Transitive dependents are computed by breadth-first search with a visited set,
so cycles (a field depending on itself, directly or through others) terminate.
Results are cached per source key behind a topology token: any edge change
bumps the token and the whole cache is dropped on the next lookup. Topology
changes are rare next to value changes, so wholesale invalidation is cheap.
"""
from collections import deque
import logging
from typing import Dict, FrozenSet, Iterable, Set

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Adjacency map with cached transitive closure per source key."""

    def __init__(self):
        self._dependents: Dict[str, Set[str]] = {}
        self._topology_token: int = 0

        # Closure cache, valid only while _cache_token == _topology_token
        self._closure_cache: Dict[str, FrozenSet[str]] = {}
        self._cache_token: int = -1

    @property
    def topology_token(self) -> int:
        """Incremented on every edge change."""
        return self._topology_token

    def add_edges(self, dependent: str, sources: Iterable[str]) -> None:
        """Record that dependent must revalidate when any of sources changes."""
        changed = False
        for source in sources:
            bucket = self._dependents.setdefault(source, set())
            if dependent not in bucket:
                bucket.add(dependent)
                changed = True
        if changed:
            self._bump()

    def remove_edges(self, dependent: str, sources: Iterable[str]) -> None:
        changed = False
        for source in sources:
            bucket = self._dependents.get(source)
            if bucket and dependent in bucket:
                bucket.discard(dependent)
                if not bucket:
                    del self._dependents[source]
                changed = True
        if changed:
            self._bump()

    def direct_dependents(self, source: str) -> FrozenSet[str]:
        return frozenset(self._dependents.get(source, ()))

    def transitive_dependents(self, source: str) -> FrozenSet[str]:
        """Every key reachable from source by following edges, source excluded.

        A cycle that leads back to source does not add source to the result.
        """
        if self._cache_token != self._topology_token:
            self._closure_cache.clear()
            self._cache_token = self._topology_token

        cached = self._closure_cache.get(source)
        if cached is not None:
            return cached

        result: Set[str] = set()
        visited = {source}
        queue = deque([source])
        while queue:
            current = queue.popleft()
            for dependent in self._dependents.get(current, ()):
                if dependent not in visited:
                    visited.add(dependent)
                    result.add(dependent)
                    queue.append(dependent)

        closure = frozenset(result)
        self._closure_cache[source] = closure
        return closure

    def edge_count(self) -> int:
        return sum(len(bucket) for bucket in self._dependents.values())

    def clear(self) -> None:
        self._dependents.clear()
        self._bump()

    def _bump(self) -> None:
        self._topology_token += 1
        logger.debug(f"GRAPH: topology token -> {self._topology_token}")
