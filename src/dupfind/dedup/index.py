"""
Similarity search over fingerprints by Hamming distance.

Two implementations share one contract: every stored entry within the
requested distance is returned, and nothing else. BKTreeIndex prunes with
the triangle inequality so a query with a small radius touches a fraction
of the corpus; LinearIndex compares against everything and serves as the
reference for small inputs and tests.
"""

from __future__ import annotations

from typing import Generic, Hashable, List, NamedTuple, Optional, Protocol, TypeVar

import imagehash

from ..config import ConfigError
from ..logging import get_logger
from .distance import fingerprint_to_int, int_distance

logger = get_logger(__name__)

Ref = TypeVar("Ref", bound=Hashable)

PRESSURE_RATIO = 0.9


class IndexExhaustionError(Exception):
    """Raised when an index is asked to hold more entries than allowed."""

    def __init__(self, limit: int):
        self.limit = limit
        self.summary = None  # filled in by the pipeline on fatal wind-down
        super().__init__(f"similarity index is full ({limit} entries)")


class IndexMatch(NamedTuple):
    ref: Hashable
    distance: int


class SimilarityIndex(Protocol):
    def insert(self, fingerprint: imagehash.ImageHash, ref: Hashable) -> None: ...

    def query_within(self, fingerprint: imagehash.ImageHash, max_distance: int) -> List[IndexMatch]: ...

    def __len__(self) -> int: ...


class _Capacity:
    """Entry counting shared by both index kinds."""

    def __init__(self, max_entries: Optional[int]):
        self.max_entries = max_entries
        self._count = 0
        self._warned = False

    def __len__(self) -> int:
        return self._count

    def _reserve(self) -> None:
        if self.max_entries is not None:
            if self._count >= self.max_entries:
                raise IndexExhaustionError(self.max_entries)
            if not self._warned and self._count + 1 >= PRESSURE_RATIO * self.max_entries:
                self._warned = True
                logger.warning(
                    f"Similarity index at {self._count + 1}/{self.max_entries} entries"
                )
        self._count += 1


class LinearIndex(_Capacity, Generic[Ref]):
    """Exhaustive scan index."""

    def __init__(self, max_entries: Optional[int] = None):
        super().__init__(max_entries)
        self._values: List[int] = []
        self._refs: List[Ref] = []

    def insert(self, fingerprint: imagehash.ImageHash, ref: Ref) -> None:
        self._reserve()
        self._values.append(fingerprint_to_int(fingerprint))
        self._refs.append(ref)

    def query_within(self, fingerprint: imagehash.ImageHash, max_distance: int) -> List[IndexMatch]:
        query = fingerprint_to_int(fingerprint)
        matches = []
        for value, ref in zip(self._values, self._refs):
            distance = int_distance(query, value)
            if distance <= max_distance:
                matches.append(IndexMatch(ref, distance))
        return matches


class BKTreeIndex(_Capacity, Generic[Ref]):
    """
    BK-tree keyed by Hamming distance.

    Nodes live in parallel lists and children are addressed by node number,
    so the tree holds no object references between nodes. Entries with an
    identical fingerprint share a node.
    """

    def __init__(self, max_entries: Optional[int] = None):
        super().__init__(max_entries)
        self._values: List[int] = []
        self._refs: List[List[Ref]] = []
        self._children: List[dict] = []

    @property
    def node_count(self) -> int:
        return len(self._values)

    def insert(self, fingerprint: imagehash.ImageHash, ref: Ref) -> None:
        self._reserve()
        value = fingerprint_to_int(fingerprint)

        if not self._values:
            self._add_node(value, ref)
            return

        node = 0
        while True:
            distance = int_distance(value, self._values[node])
            if distance == 0:
                self._refs[node].append(ref)
                return
            child = self._children[node].get(distance)
            if child is None:
                self._children[node][distance] = self._add_node(value, ref)
                return
            node = child

    def query_within(self, fingerprint: imagehash.ImageHash, max_distance: int) -> List[IndexMatch]:
        if not self._values:
            return []

        query = fingerprint_to_int(fingerprint)
        matches = []
        stack = [0]
        while stack:
            node = stack.pop()
            distance = int_distance(query, self._values[node])
            if distance <= max_distance:
                matches.extend(IndexMatch(ref, distance) for ref in self._refs[node])

            low, high = distance - max_distance, distance + max_distance
            for edge, child in self._children[node].items():
                if low <= edge <= high:
                    stack.append(child)
        return matches

    def _add_node(self, value: int, ref: Ref) -> int:
        self._values.append(value)
        self._refs.append([ref])
        self._children.append({})
        return len(self._values) - 1


def make_index(kind: str = "bktree", max_entries: Optional[int] = None) -> SimilarityIndex:
    """Build an empty index of the named kind."""
    if kind == "bktree":
        return BKTreeIndex(max_entries)
    if kind == "linear":
        return LinearIndex(max_entries)
    raise ConfigError(f"unknown index kind {kind!r}")
